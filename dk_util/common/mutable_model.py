from pydantic import BaseModel
from pydantic import ConfigDict


class MutableModel(BaseModel):
    """Base class for mutable pydantic models that allow attribute mutation after construction.

    Assignments are re-validated so that a mutated model never holds a value its
    field type would have rejected at construction time.
    """

    model_config = ConfigDict(
        frozen=False,
        extra="forbid",
        arbitrary_types_allowed=False,
        validate_assignment=True,
    )
