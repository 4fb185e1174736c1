from sqlalchemy import Column, Integer, Text

from sqlgate.core.database import Base


# =========================
# Query audit
# =========================
class QueryAudit(Base):
    """
    One row per accepted request.

    payload holds the request exactly as received; the timestamps are RFC 3339
    strings bracketing the execution of all of its statements.
    """

    __tablename__ = "__metadata_query"

    id = Column(Integer, primary_key=True, autoincrement=True)

    payload = Column(Text, nullable=False)

    started_at = Column(Text, nullable=False)
    finished_at = Column(Text, nullable=False)
