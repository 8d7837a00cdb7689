from models import db
from models.user import Role

DEFAULT_ROLES = ["PLAYER", "ORGANIZER", "ADMIN"]


def seed_roles():
    existing = set(db.session.execute(db.select(Role.name)).scalars())
    for name in DEFAULT_ROLES:
        if name not in existing:
            db.session.add(Role(name=name))
    db.session.commit()


def get_role(name: str) -> Role:
    return db.session.execute(db.select(Role).filter_by(name=name)).scalar_one()
