from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

FILE_TYPES_PATTERN = "^(pdf|video|document)$"


class ContentFileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    path: str
    original_name: str
    file_type: str
    size: int
    uploaded_at: datetime
    temporary: bool = False


class FileRef(BaseModel):
    """A file the editor sends back when saving a section; matched by id, then by path."""

    id: Optional[int] = None
    path: str = ""


class ChapterIn(BaseModel):
    id: Optional[int] = None  # existing chapter being edited
    title: str = ""
    content: str = ""
    files: list[FileRef] = Field(default_factory=list)


class ChaptersIn(BaseModel):
    chapters: list[ChapterIn]


class ChapterOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    content: str
    files: list[ContentFileOut] = Field(default_factory=list)


class SyllabusIn(BaseModel):
    content: Optional[str] = None
    files: Optional[list[FileRef]] = None


class SyllabusOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    content: str = ""
    files: list[ContentFileOut] = Field(default_factory=list)


class ReferenceIn(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None


class ReferenceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str
    files: list[ContentFileOut] = Field(default_factory=list)


class ModuleSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str
    academic_year: str
    level: str
    semester: int
    teacher_id: Optional[str] = None


class ModuleDetailOut(ModuleSummaryOut):
    chapters: list[ChapterOut] = Field(default_factory=list)
    syllabus: SyllabusOut = Field(default_factory=SyllabusOut)
    references: list[ReferenceOut] = Field(default_factory=list)


class UploadOut(BaseModel):
    module_id: int
    target: str          # chapter | syllabus | reference
    index: Optional[int] = None
    file: ContentFileOut


class DiscardOut(BaseModel):
    files_removed: int
    message: str


class EnrollmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    student_id: str
    module_id: int
    enrolled_at: datetime
