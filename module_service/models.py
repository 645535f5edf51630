from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shared.database import Base, utcnow


class Module(Base):
    __tablename__ = "module"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(100))
    description: Mapped[str] = mapped_column(String(500), default="")
    academic_year: Mapped[str] = mapped_column(String(20), index=True)  # e.g. 2024-2025
    level: Mapped[str] = mapped_column(String(10), index=True)          # lmd1 | ing1
    semester: Mapped[int] = mapped_column(Integer, default=1)           # 1 | 2
    teacher_id: Mapped[Optional[str]] = mapped_column(String(64), index=True, nullable=True)
    created_by: Mapped[str] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    chapters: Mapped[list["Chapter"]] = relationship(
        back_populates="module", order_by="Chapter.position", cascade="all, delete-orphan"
    )
    syllabus: Mapped[Optional["Syllabus"]] = relationship(
        back_populates="module", uselist=False, cascade="all, delete-orphan"
    )
    references: Mapped[list["Reference"]] = relationship(
        back_populates="module", order_by="Reference.position", cascade="all, delete-orphan"
    )


class Enrollment(Base):
    __tablename__ = "enrollment"
    __table_args__ = (UniqueConstraint("student_id", "module_id", name="uq_enrollment_student_module"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[str] = mapped_column(String(64), index=True)
    module_id: Mapped[int] = mapped_column(Integer, ForeignKey("module.id", ondelete="CASCADE"), index=True)
    enrolled_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Chapter(Base):
    __tablename__ = "chapter"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    module_id: Mapped[int] = mapped_column(Integer, ForeignKey("module.id"), index=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    title: Mapped[str] = mapped_column(String(100))
    content: Mapped[str] = mapped_column(Text, default="")

    module: Mapped[Module] = relationship(back_populates="chapters")
    files: Mapped[list["ContentFile"]] = relationship(
        back_populates="chapter", order_by="ContentFile.id", cascade="all, delete-orphan"
    )


class Syllabus(Base):
    __tablename__ = "syllabus"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    module_id: Mapped[int] = mapped_column(Integer, ForeignKey("module.id"), unique=True)
    content: Mapped[str] = mapped_column(Text, default="")

    module: Mapped[Module] = relationship(back_populates="syllabus")
    files: Mapped[list["ContentFile"]] = relationship(
        back_populates="syllabus", order_by="ContentFile.id", cascade="all, delete-orphan"
    )


class Reference(Base):
    __tablename__ = "reference"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    module_id: Mapped[int] = mapped_column(Integer, ForeignKey("module.id"), index=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    title: Mapped[str] = mapped_column(String(100))
    description: Mapped[str] = mapped_column(Text, default="")

    module: Mapped[Module] = relationship(back_populates="references")
    files: Mapped[list["ContentFile"]] = relationship(
        back_populates="reference", order_by="ContentFile.id", cascade="all, delete-orphan"
    )


class ContentFile(Base):
    __tablename__ = "content_file"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    module_id: Mapped[int] = mapped_column(Integer, ForeignKey("module.id"), index=True)
    # exactly one owner is set
    chapter_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("chapter.id"), nullable=True)
    syllabus_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("syllabus.id"), nullable=True)
    reference_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("reference.id"), nullable=True)

    path: Mapped[str] = mapped_column(String(255))           # /uploads/<stored_name>
    stored_name: Mapped[str] = mapped_column(String(255))
    original_name: Mapped[str] = mapped_column(String(255), default="")
    file_type: Mapped[str] = mapped_column(String(20), default="pdf")  # pdf | video | document
    size: Mapped[int] = mapped_column(Integer, default=0)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    temporary: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    chapter: Mapped[Optional[Chapter]] = relationship(back_populates="files")
    syllabus: Mapped[Optional[Syllabus]] = relationship(back_populates="files")
    reference: Mapped[Optional[Reference]] = relationship(back_populates="files")
