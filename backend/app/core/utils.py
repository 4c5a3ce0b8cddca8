from datetime import datetime, timezone
from typing import Optional

def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Devuelve el datetime con zona horaria UTC.
    Los valores naive (por ejemplo los que devuelve SQLite) se interpretan como UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)

def normalize_datetime_comparison(dt1, dt2):
    """
    Normaliza dos objetos datetime para que ambos sean comparables.
    Si uno tiene zona horaria (aware) y el otro no (naive),
    convierte el naive a aware usando la zona horaria del otro.
    Si ambos son aware pero con diferentes zonas horarias, los convierte a UTC.

    Returns:
        tuple: (dt1_normalized, dt2_normalized)
    """
    if (dt1.tzinfo is None) == (dt2.tzinfo is None):
        if dt1.tzinfo is not None and dt1.tzinfo != dt2.tzinfo:
            return dt1.astimezone(timezone.utc), dt2.astimezone(timezone.utc)
        return dt1, dt2

    if dt1.tzinfo is not None:
        return dt1, dt2.replace(tzinfo=dt1.tzinfo)

    return dt1.replace(tzinfo=dt2.tzinfo), dt2

def is_strictly_newer(candidate: Optional[datetime], current: Optional[datetime]) -> bool:
    """True si `candidate` es estrictamente posterior a `current`."""
    if candidate is None:
        return False
    if current is None:
        return True
    candidate, current = normalize_datetime_comparison(candidate, current)
    return candidate > current

def utcnow() -> datetime:
    return datetime.now(timezone.utc)
