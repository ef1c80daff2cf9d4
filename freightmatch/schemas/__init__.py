from freightmatch.schemas.matching import (  # noqa: F401
    CarrierSearchOptions,
    LoadSearchOptions,
    Pagination,
)
