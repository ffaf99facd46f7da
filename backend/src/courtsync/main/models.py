from pydantic import BaseModel


class GeneralError(BaseModel):
    message: str
    error_code: int
