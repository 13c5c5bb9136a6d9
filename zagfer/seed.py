import logging

from zagfer.models import Tool, User
from zagfer.store import EntityStore

logger = logging.getLogger("zagfer.seed")

INITIAL_TOOLS = [
    {"id": "1", "name": "Chave de Fenda", "category": "Manual", "size": '1/4"', "sector": "Manutenção A"},
    {"id": "2", "name": "Chave Phillips", "category": "Manual", "size": '3/8"', "sector": "Manutenção A"},
    {"id": "3", "name": "Alicate Universal", "category": "Manual", "size": '8"', "sector": "Montagem"},
    {"id": "4", "name": "Furadeira de Impacto", "category": "Elétrica", "sector": "Usinagem"},
    {"id": "5", "name": "Paquímetro Digital", "category": "Medição", "size": "150mm", "sector": "Controle de Qualidade"},
    {"id": "6", "name": "Martelete", "category": "Elétrica", "sector": "Civil"},
    {"id": "7", "name": "Jogo de Chaves Allen", "category": "Manual", "sector": "Manutenção B"},
    {"id": "8", "name": "Multímetro", "category": "Elétrica", "sector": "Elétrica"},
]

INITIAL_USERS = [
    {"id": "1", "name": "Gerente", "matricula": "459524", "active": True, "role": "admin"},
    {"id": "2", "name": "3S EDIMAR", "matricula": "123456", "active": True, "role": "user"},
]


def load_initial_data(store: EntityStore) -> bool:
    """空库时写入初始数据；真正写了才返回 True。"""
    if store.list_tools() or store.list_users():
        logger.info("database already has data, skipping initial load")
        return False

    # 初始数据一律可用：没有对应的领用单就不能标记为借出
    tools = store.create_tools([Tool(status="AVAILABLE", **row) for row in INITIAL_TOOLS])
    users = store.create_users([User(**row) for row in INITIAL_USERS])
    logger.info("initial data loaded: %d tools, %d users", len(tools), len(users))
    return True
