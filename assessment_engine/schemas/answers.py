"""Answer payloads, one variant per answer shape.

The ``kind`` field discriminates the union so every variant carries only the
field its question type needs.
"""

from typing import Annotated, FrozenSet, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, TypeAdapter


FileReferenceStr = Annotated[str, StringConstraints(min_length=1, strip_whitespace=True)]


class ChoiceAnswer(BaseModel):
    """Answer to a single_choice, multiple_choice or true_false question."""
    kind: Literal["choice"] = "choice"
    question_id: UUID
    selected_options: FrozenSet[UUID] = Field(default_factory=frozenset)

    model_config = ConfigDict(frozen=True)


class TextAnswer(BaseModel):
    """Answer to a short_answer or long_answer question."""
    kind: Literal["text"] = "text"
    question_id: UUID
    answer_text: str

    model_config = ConfigDict(frozen=True)


class FileAnswer(BaseModel):
    """Answer to a file_upload question; holds a reference to the stored file."""
    kind: Literal["file"] = "file"
    question_id: UUID
    answer_file: FileReferenceStr

    model_config = ConfigDict(frozen=True)


AnswerPayload = Annotated[
    Union[ChoiceAnswer, TextAnswer, FileAnswer],
    Field(discriminator="kind"),
]

answer_adapter: TypeAdapter[AnswerPayload] = TypeAdapter(AnswerPayload)
