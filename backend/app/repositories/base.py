from typing import Any, Dict, List
from sqlalchemy.orm import Session

def dialect_insert(db: Session):
    """
    Devuelve el `insert` del dialecto activo (con soporte ON CONFLICT) o None.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    return None

def insert_ignore(db: Session, model, values: Dict[str, Any], index_elements: List[str]) -> None:
    """INSERT que no hace nada si ya existe una fila con la misma clave."""
    insert = dialect_insert(db)
    if insert is None:
        key = {name: values[name] for name in index_elements}
        if db.query(model).filter_by(**key).first() is None:
            db.add(model(**values))
            db.flush()
        return

    db.execute(insert(model).values(**values).on_conflict_do_nothing(index_elements=index_elements))

def upsert(
    db: Session,
    model,
    values: Dict[str, Any],
    index_elements: List[str],
    update_fields: List[str],
) -> None:
    """INSERT ... ON CONFLICT DO UPDATE, con alternativa leer-y-escribir."""
    insert = dialect_insert(db)
    if insert is None:
        key = {name: values[name] for name in index_elements}
        existing = db.query(model).filter_by(**key).first()
        if existing is None:
            db.add(model(**values))
        else:
            for name in update_fields:
                setattr(existing, name, values[name])
        db.flush()
        return

    stmt = insert(model).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=index_elements,
        set_={name: stmt.excluded[name] for name in update_fields},
    )
    db.execute(stmt)
