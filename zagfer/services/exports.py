"""
回执和表格导出。

PDF 回执用 reportlab platypus 排版；表格导出成 CSV（UTF-8 带 BOM，Excel 打开不乱码）或 XLSX。
"""

import csv
import io
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence
from xml.sax.saxutils import escape
from zoneinfo import ZoneInfo

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from zagfer.errors import ValidationError
from zagfer.models import HistoryRecord, Tool
from zagfer.schemas import ActionType, Role, ToolCreate, ToolStatus

CSV_MEDIA_TYPE = "text/csv; charset=utf-8"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def fmt_dt(value: Optional[datetime], pattern: str = "%d/%m/%Y %H:%M", tz: Optional[ZoneInfo] = None) -> str:
    if value is None:
        return ""
    if tz is not None:
        # 不带时区的按 UTC
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(tz)
    return value.strftime(pattern)


# ---------- receipts ----------

def receipt_filename(record: HistoryRecord) -> str:
    prefix = "Devolucao" if record.action_type == ActionType.RETURN.value else "Retirada"
    who = "_".join((record.responsible_name or "").split()) or "sem_nome"
    return f"ZAGFER_{prefix}_{who}_{record.timestamp.strftime('%Y%m%d')}.pdf"


def render_receipt(record: HistoryRecord, tools: Sequence[Tool], tz: Optional[ZoneInfo] = None) -> bytes:
    is_return = record.action_type == ActionType.RETURN.value
    title = "COMPROVANTE DE DEVOLUÇÃO" if is_return else "COMPROVANTE DE RETIRADA"
    header_color = colors.HexColor("#16A34A") if is_return else colors.HexColor("#0E82A5")

    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer, pagesize=A4, rightMargin=2 * cm, leftMargin=2 * cm, topMargin=1.5 * cm, bottomMargin=2 * cm,
        title=title, author="ZAGFER",
    )

    styles = getSampleStyleSheet()
    brand_style = ParagraphStyle(
        "ZagferBrand", parent=styles["Heading1"], fontSize=22, alignment=TA_CENTER, textColor=colors.white,
    )
    title_style = ParagraphStyle(
        "ZagferTitle", parent=styles["Heading2"], fontSize=12, alignment=TA_CENTER, textColor=colors.white,
    )
    normal = styles["Normal"]
    small = ParagraphStyle("ZagferSmall", parent=normal, fontSize=8, textColor=colors.grey)

    story = []

    banner = Table(
        [[Paragraph("ZAGFER", brand_style)], [Paragraph(title, title_style)]],
        colWidths=[17 * cm],
    )
    banner.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, -1), header_color),
        ("TOPPADDING", (0, 0), (-1, -1), 6),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
    ]))
    story.append(banner)
    story.append(Spacer(1, 16))

    details = [
        f"<b>Data:</b> {fmt_dt(record.timestamp, tz=tz)}",
        f"<b>Tipo:</b> {'Devolução' if is_return else 'Retirada'}",
    ]
    if not is_return and record.expected_return_date:
        details.append(f"<b>Previsão Devolução:</b> {fmt_dt(record.expected_return_date, tz=tz)}")

    people = [
        f"<b>MILITAR:</b> {escape(record.responsible_name)}",
        f"<b>OM/Seção:</b> {escape(record.responsible_matricula)}",
        f"<b>Despachante:</b> {escape(record.dispatcher_name)}",
    ]

    info = Table(
        [
            [Paragraph("<b>Detalhes da Operação</b>", normal), Paragraph("<b>Responsáveis</b>", normal)],
            [Paragraph("<br/>".join(details), normal), Paragraph("<br/>".join(people), normal)],
        ],
        colWidths=[8.5 * cm, 8.5 * cm],
    )
    info.setStyle(TableStyle([
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
    ]))
    story.append(info)
    story.append(Spacer(1, 14))

    rows = [["Ferramenta", "BMP", "Categoria", "Setor"]]
    for tool in tools:
        name = tool.name + (f" ({tool.size})" if tool.size else "")
        if len(name) > 35:
            name = name[:32] + "..."
        rows.append([name, tool.bmp or "-", tool.category, tool.sector])

    tools_table = Table(rows, colWidths=[7 * cm, 3 * cm, 3.5 * cm, 3.5 * cm], repeatRows=1)
    tools_table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#F0F0F0")),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTNAME", (0, 1), (-1, -1), "Helvetica"),
        ("FONTSIZE", (0, 0), (-1, -1), 10),
        ("LINEBELOW", (0, 0), (-1, 0), 0.5, colors.grey),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
    ]))
    story.append(tools_table)
    story.append(Spacer(1, 18))

    if not is_return:
        story.append(Paragraph(
            "O militar declara ter recebido as ferramentas em perfeito estado e compromete-se a devolvê-las.",
            normal,
        ))
        story.append(Spacer(1, 40))
        signature = Table([[""], [escape(record.responsible_name)]], colWidths=[10 * cm])
        signature.setStyle(TableStyle([
            ("LINEABOVE", (0, 1), (0, 1), 0.8, colors.black),
            ("ALIGN", (0, 0), (-1, -1), "CENTER"),
        ]))
        story.append(signature)
    else:
        story.append(Paragraph(f"Recebido pelo {escape(record.dispatcher_name)}", normal))

    story.append(Spacer(1, 30))
    story.append(Paragraph("Documento gerado automaticamente pelo sistema ZAGFER.", small))

    doc.build(story)
    return buffer.getvalue()


# ---------- tables ----------

@dataclass(frozen=True)
class Column:
    header: str
    accessor: Callable[[Any], Any]
    width: int = 16


def _cell(value: Any) -> str:
    return "" if value is None else str(value)


def export_table(rows: Sequence[Any], columns: Sequence[Column], fmt: str = "csv", sheet_title: str = "ZAGFER") -> bytes:
    if fmt == "csv":
        sio = io.StringIO()
        writer = csv.writer(sio, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow([c.header for c in columns])
        for row in rows:
            writer.writerow([_cell(c.accessor(row)) for c in columns])
        return ("\ufeff" + sio.getvalue()).encode("utf-8")

    if fmt == "xlsx":
        return _export_xlsx(rows, columns, sheet_title)

    raise ValidationError(f"Formato de exportação não suportado: {fmt}", "BAD_FORMAT")


def _export_xlsx(rows: Sequence[Any], columns: Sequence[Column], sheet_title: str) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title[:31]

    header_font = Font(bold=True)
    header_fill = PatternFill("solid", fgColor="DDDDDD")
    header_align = Alignment(horizontal="center", vertical="center")

    ws.append([c.header for c in columns])
    ws.row_dimensions[1].height = 24
    for col in range(1, len(columns) + 1):
        cell = ws.cell(row=1, column=col)
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = header_align

    for row in rows:
        ws.append([_cell(c.accessor(row)) for c in columns])

    # 冻结首行
    ws.freeze_panes = "A2"
    for idx, column in enumerate(columns, start=1):
        ws.column_dimensions[ws.cell(row=1, column=idx).column_letter].width = column.width

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


TOOL_COLUMNS = [
    Column("ID", lambda t: t.id, 10),
    Column("Nome", lambda t: t.name, 28),
    Column("Categoria", lambda t: t.category, 14),
    Column("Tamanho", lambda t: t.size, 10),
    Column("Setor", lambda t: t.sector, 20),
    Column("BMP", lambda t: t.bmp, 12),
    Column("Status", lambda t: "Disponível" if t.status == ToolStatus.AVAILABLE.value else "Indisponível", 14),
]

USER_COLUMNS = [
    Column("ID", lambda u: u.id, 12),
    Column("Nome", lambda u: u.name, 28),
    Column("Matrícula", lambda u: u.matricula, 14),
    Column("Status", lambda u: "Ativo" if u.active else "Inativo", 10),
    Column("Permissão", lambda u: "Administrador" if u.role == Role.admin.value else "Usuário", 14),
]


def history_columns(tz: Optional[ZoneInfo] = None) -> list[Column]:
    return [
        Column("ID", lambda h: h.id, 34),
        Column("Data/Hora", lambda h: fmt_dt(h.timestamp, "%d/%m/%Y %H:%M:%S", tz=tz), 20),
        Column("Tipo", lambda h: "Retirada" if h.action_type == ActionType.CHECKOUT.value else "Devolução", 12),
        Column("Responsável", lambda h: h.responsible_name, 24),
        Column("Matrícula Resp.", lambda h: h.responsible_matricula, 14),
        Column("Despachante", lambda h: h.dispatcher_name, 20),
        Column("Ferramentas", lambda h: h.tools_summary, 40),
        Column("Previsão Devolução", lambda h: fmt_dt(h.expected_return_date, tz=tz), 20),
    ]


# ---------- import ----------

def parse_tool_csv(text: str) -> list[ToolCreate]:
    """
    批量导入，每行一件工具：name, category, size, sector, bmp
    逗号或分号分隔；第一行含 "name"/"nome" 视为表头；缺 name 或 category 的行跳过。
    """
    lines = (text or "").lstrip("\ufeff").splitlines()
    if not lines:
        return []

    first = lines[0].lower()
    start = 1 if ("name" in first or "nome" in first) else 0

    tools = []
    for raw in lines[start:]:
        line = raw.strip()
        if not line:
            continue

        parts = [p.strip() for p in (line.split(";") if ";" in line else line.split(","))]
        if len(parts) < 3:
            continue

        name, category = parts[0], parts[1]
        if not name or not category:
            continue

        size = parts[2] if len(parts) > 2 else ""
        sector = parts[3] if len(parts) > 3 else ""
        bmp = parts[4] if len(parts) > 4 else ""

        tools.append(ToolCreate(
            name=name,
            category=category,
            size=size or None,
            sector=sector or "Geral",
            bmp=bmp or None,
        ))
    return tools