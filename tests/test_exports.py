import io
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest
from openpyxl import load_workbook

from zagfer.errors import ValidationError
from zagfer.models import HistoryRecord, Tool
from zagfer.services.exports import (
    TOOL_COLUMNS,
    export_table,
    fmt_dt,
    history_columns,
    parse_tool_csv,
    receipt_filename,
    render_receipt,
)


def _tools():
    return [
        Tool(id="T1", name='Chave "Estrela"', category="Manual", size="10mm", sector="Oficina", status="AVAILABLE"),
        Tool(id="T2", name="Multímetro", category="Elétrica", sector="Elétrica", bmp="BMP-9", status="UNAVAILABLE"),
    ]


def _record(action="CHECKOUT"):
    return HistoryRecord(
        id="abc123",
        timestamp=datetime(2026, 1, 10, 8, 30, tzinfo=timezone.utc),
        action_type=action,
        dispatcher_id="u-admin",
        dispatcher_name="Gerente",
        dispatcher_matricula="459524",
        responsible_name="3S EDIMAR SILVA",
        responsible_matricula="GAP-SP",
        tool_ids=["T1", "T2"],
        tools_summary='Chave "Estrela", Multímetro',
        expected_return_date=datetime(2026, 1, 11, 8, 30, tzinfo=timezone.utc) if action == "CHECKOUT" else None,
    )


def test_csv_has_bom_and_quotes_every_field():
    body = export_table(_tools(), TOOL_COLUMNS, "csv").decode("utf-8")

    assert body.startswith("\ufeff")
    lines = body.lstrip("\ufeff").splitlines()
    assert lines[0] == '"ID","Nome","Categoria","Tamanho","Setor","BMP","Status"'
    assert lines[1] == '"T1","Chave ""Estrela""","Manual","10mm","Oficina","","Disponível"'
    assert lines[2].endswith('"BMP-9","Indisponível"')


def test_history_csv_formats_dates():
    body = export_table([_record()], history_columns(), "csv").decode("utf-8")
    row = body.splitlines()[1]

    assert '"10/01/2026 08:30:00"' in row
    assert '"Retirada"' in row
    assert '"11/01/2026 08:30"' in row


def test_xlsx_header_and_rows():
    content = export_table(_tools(), TOOL_COLUMNS, "xlsx", sheet_title="Ferramentas")

    wb = load_workbook(io.BytesIO(content))
    ws = wb["Ferramentas"]
    assert ws["A1"].value == "ID"
    assert ws["A1"].font.bold
    assert ws["B3"].value == "Multímetro"
    assert ws.freeze_panes == "A2"


def test_unknown_export_format():
    with pytest.raises(ValidationError) as exc:
        export_table([], TOOL_COLUMNS, "ods")
    assert exc.value.code == "BAD_FORMAT"


@pytest.mark.parametrize("action", ["CHECKOUT", "RETURN"])
def test_render_receipt_is_a_pdf(action):
    pdf = render_receipt(_record(action), _tools())
    assert pdf.startswith(b"%PDF")
    assert len(pdf) > 1000


def test_receipt_filename():
    assert receipt_filename(_record()) == "ZAGFER_Retirada_3S_EDIMAR_SILVA_20260110.pdf"
    assert receipt_filename(_record("RETURN")) == "ZAGFER_Devolucao_3S_EDIMAR_SILVA_20260110.pdf"


def test_parse_tool_csv():
    text = (
        "\ufeffnome;categoria;tamanho;setor;bmp\n"
        "Martelo;Manual;500g;Oficina;BMP-1\n"
        "\n"
        "Serrote;Manual;;\n"
        "sem categoria;;x\n"
        "curta;Manual\n"
    )

    tools = parse_tool_csv(text)

    assert [t.name for t in tools] == ["Martelo", "Serrote"]
    assert tools[0].size == "500g"
    assert tools[0].sector == "Oficina"
    assert tools[0].bmp == "BMP-1"
    assert tools[1].size is None
    assert tools[1].sector == "Geral"
    assert tools[1].bmp is None


def test_parse_tool_csv_without_header():
    tools = parse_tool_csv("Alicate,Manual,8in,Montagem\n")
    assert len(tools) == 1
    assert tools[0].category == "Manual"
    assert tools[0].sector == "Montagem"
    assert parse_tool_csv("") == []


def test_fmt_dt_converts_to_local_zone():
    sp = ZoneInfo("America/Sao_Paulo")
    assert fmt_dt(datetime(2026, 2, 1, 1, 0, tzinfo=timezone.utc), tz=sp) == "31/01/2026 22:00"
    # 不带时区的值按 UTC 算
    assert fmt_dt(datetime(2026, 2, 1, 1, 0), tz=sp) == "31/01/2026 22:00"
    assert fmt_dt(None) == ""
