from typing import Any, List, Union

from pydantic import BaseModel, StrictStr


# =========================
# QUERY
# =========================
class QueryRequest(BaseModel):
    """
    Wire shape of a request.

    `sql` as a string pairs with a flat `args` list; `sql` as a list pairs with
    one argument list per statement.
    """

    sql: Union[StrictStr, List[StrictStr]]
    args: List[Any]


class QueryResponse(BaseModel):
    rows: List[List[Any]] = []
