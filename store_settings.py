"""Store settings persisted as key/value rows and exposed as StoreSettings."""
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import Setting
from schemas import StoreSettings, StoreSettingsUpdate

logger = logging.getLogger(__name__)


def load_store_settings(session: Session) -> StoreSettings:
    rows = session.scalars(select(Setting)).all()
    # Empty values fall back to the model defaults
    values = {row.key: row.value for row in rows if row.value not in (None, "")}
    return StoreSettings.model_validate(values)


def save_store_settings(session: Session, update: StoreSettingsUpdate) -> StoreSettings:
    changes = update.model_dump(by_alias=True, exclude_unset=True)
    try:
        for key, value in changes.items():
            session.merge(Setting(key=key, value=value))
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info("Store settings updated: %s", ", ".join(sorted(changes)) or "nothing")
    return load_store_settings(session)
