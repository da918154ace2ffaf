from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt

# JSON numbers only; strict types keep booleans and numeric strings out.
JsonNumber = Union[StrictInt, StrictFloat]


class DownloadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Checked by the validator after the time range, so it stays untyped here.
    url: Any = None
    start_time: Optional[JsonNumber] = Field(default=None, alias="startTime")
    end_time: Optional[JsonNumber] = Field(default=None, alias="endTime")
    optimize_loop: Optional[StrictBool] = Field(default=False, alias="optimizeLoop")


class ErrorResponse(BaseModel):
    error: str
