import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shared.errors import ConflictError, NotFoundError, ValidationError
from .models import Chapter, ContentFile, Enrollment, Module, Reference, Syllabus
from .schemas import (
    ChapterIn,
    ChapterOut,
    ContentFileOut,
    FileRef,
    ModuleDetailOut,
    ReferenceOut,
    SyllabusOut,
)
from .storage import remove_stored

logger = logging.getLogger(__name__)

TITLE_MAX = 100
LEVELS = ("lmd1", "ing1")


# ---- Modules / enrollment ----

def create_module(
    db: Session,
    *,
    title: str,
    academic_year: str,
    level: str,
    created_by: str,
    description: str = "",
    semester: int = 1,
    teacher_id: str | None = None,
) -> Module:
    if level not in LEVELS:
        raise ValidationError("Level must be one of: lmd1, ing1", field="level")
    if semester not in (1, 2):
        raise ValidationError("Semester must be either 1 or 2", field="semester")
    m = Module(
        title=title,
        description=description,
        academic_year=academic_year,
        level=level,
        semester=semester,
        created_by=created_by,
        teacher_id=teacher_id,
    )
    db.add(m)
    db.commit()
    db.refresh(m)
    return m


def get_module(db: Session, module_id: int) -> Module | None:
    return db.query(Module).filter(Module.id == module_id).first()


def get_assigned_module(db: Session, module_id: int, teacher_id: str) -> Module:
    m = db.query(Module).filter(Module.id == module_id, Module.teacher_id == teacher_id).first()
    if not m:
        raise NotFoundError("Module not found or not assigned to you")
    return m


def list_assigned_modules(db: Session, teacher_id: str) -> list[Module]:
    return db.query(Module).filter(Module.teacher_id == teacher_id).order_by(Module.id.asc()).all()


def is_enrolled(db: Session, module_id: int, student_id: str) -> bool:
    return (
        db.query(Enrollment)
        .filter(Enrollment.module_id == module_id, Enrollment.student_id == student_id)
        .first()
        is not None
    )


def enroll(db: Session, module_id: int, student_id: str) -> Enrollment:
    m = get_module(db, module_id)
    if not m or not m.teacher_id:
        raise NotFoundError("Module not found")
    if is_enrolled(db, module_id, student_id):
        raise ConflictError("You are already enrolled in this module")

    e = Enrollment(module_id=module_id, student_id=student_id)
    db.add(e)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("You are already enrolled in this module")
    db.refresh(e)
    return e


def list_enrolled_modules(db: Session, student_id: str) -> list[Module]:
    return (
        db.query(Module)
        .join(Enrollment, Enrollment.module_id == Module.id)
        .filter(Enrollment.student_id == student_id)
        .order_by(Enrollment.enrolled_at.desc())
        .all()
    )


def list_available_modules(
    db: Session, student_id: str, academic_year: str, level: str | None = None
) -> list[Module]:
    enrolled = select(Enrollment.module_id).where(Enrollment.student_id == student_id)
    q = db.query(Module).filter(
        Module.teacher_id.is_not(None),
        Module.academic_year == academic_year,
        Module.id.not_in(enrolled),
    )
    if level:
        q = q.filter(Module.level == level)
    return q.order_by(Module.id.asc()).all()


def _visible(files: Iterable[ContentFile], include_temporary: bool) -> list[ContentFileOut]:
    return [ContentFileOut.model_validate(f) for f in files if include_temporary or not f.temporary]


def module_detail(module: Module, include_temporary: bool = False) -> ModuleDetailOut:
    """Module with its content; temporary (unsaved) uploads are hidden unless asked for."""
    syllabus = SyllabusOut()
    if module.syllabus:
        syllabus = SyllabusOut(
            content=module.syllabus.content,
            files=_visible(module.syllabus.files, include_temporary),
        )
    return ModuleDetailOut(
        id=module.id,
        title=module.title,
        description=module.description,
        academic_year=module.academic_year,
        level=module.level,
        semester=module.semester,
        teacher_id=module.teacher_id,
        chapters=[
            ChapterOut(id=c.id, title=c.title, content=c.content, files=_visible(c.files, include_temporary))
            for c in module.chapters
        ],
        syllabus=syllabus,
        references=[
            ReferenceOut(
                id=r.id, title=r.title, description=r.description, files=_visible(r.files, include_temporary)
            )
            for r in module.references
        ],
    )


# ---- Content sections ----

def _require_title(title: str | None, field: str, label: str) -> str:
    title = (title or "").strip()
    if not title:
        raise ValidationError(f"{label} title is required", field=field)
    if len(title) > TITLE_MAX:
        raise ValidationError(f"{label} title cannot be more than {TITLE_MAX} characters", field=field)
    return title


def _pick_files(pool: list[ContentFile], refs: list[FileRef], taken: set[int]) -> list[ContentFile]:
    by_id = {f.id: f for f in pool}
    by_path = {f.path: f for f in pool}
    chosen: list[ContentFile] = []
    for ref in refs:
        f = by_id.get(ref.id) if ref.id is not None else None
        if f is None and ref.path:
            f = by_path.get(ref.path)
        if f is not None and f.id not in taken:
            taken.add(f.id)
            chosen.append(f)
    return chosen


def _remove_all(upload_dir: str, names: list[str]) -> None:
    # only after the rows are gone for good
    for name in names:
        remove_stored(upload_dir, name)


def _chapter_at(module: Module, index: int) -> Chapter:
    if index < 0 or index >= len(module.chapters):
        raise NotFoundError("Chapter not found")
    return module.chapters[index]


def _reference_at(module: Module, index: int) -> Reference:
    if index < 0 or index >= len(module.references):
        raise NotFoundError("Reference not found")
    return module.references[index]


def _renumber(items) -> None:
    for pos, item in enumerate(items):
        item.position = pos


def add_chapter(db: Session, module: Module, title: str, content: str = "") -> Chapter:
    title = _require_title(title, "title", "Chapter")
    c = Chapter(title=title, content=content or "", position=len(module.chapters))
    module.chapters.append(c)
    db.commit()
    db.refresh(c)
    return c


def _match_chapters(existing: list[Chapter], chapters: list[ChapterIn]) -> list[Chapter]:
    """Rows to reuse: by id when the editor sends one, else the unclaimed row at the same position."""
    by_id = {c.id: c for c in existing}
    claimed = {ch.id for ch in chapters if ch.id in by_id}
    used: set[int] = set()
    rows: list[Chapter] = []
    for i, ch in enumerate(chapters):
        row = None
        if ch.id is not None:
            if ch.id not in used:
                row = by_id.get(ch.id)
        elif i < len(existing) and existing[i].id not in claimed:
            row = existing[i]
            claimed.add(row.id)
        if row is not None:
            used.add(row.id)
        rows.append(row if row is not None else Chapter())
    return rows


def update_chapters(db: Session, module: Module, chapters: list[ChapterIn], upload_dir: str) -> Module:
    """Replace the chapter list.

    Files sent back are looked up among all of the module's chapter files, so a
    file follows its chapter when chapters are reordered or removed. Chapters
    sent without files keep the ones they have.
    """
    titles = [_require_title(ch.title, f"chapters[{i}].title", "Chapter") for i, ch in enumerate(chapters)]

    existing = list(module.chapters)
    pool = [f for c in existing for f in c.files]
    rows = _match_chapters(existing, chapters)

    taken: set[int] = set()
    picked = [_pick_files(pool, ch.files, taken) if ch.files else None for ch in chapters]
    # untouched chapters hold on to whatever nobody else claimed
    for row, files in zip(rows, picked):
        if files is None:
            taken.update(f.id for f in row.files if f.id not in taken)

    for i, (row, ch) in enumerate(zip(rows, chapters)):
        row.title = titles[i]
        row.content = ch.content or ""
        if picked[i] is not None:
            for f in picked[i]:
                f.temporary = False
            row.files = picked[i]

    dropped = [f for f in pool if f.id not in taken]
    names = [f.stored_name for f in dropped]
    for f in dropped:
        db.delete(f)

    module.chapters = rows
    _renumber(module.chapters)
    db.commit()
    _remove_all(upload_dir, names)
    db.refresh(module)
    return module


def delete_chapter(db: Session, module: Module, index: int, upload_dir: str) -> None:
    chapter = _chapter_at(module, index)
    names = [f.stored_name for f in chapter.files]
    module.chapters.remove(chapter)
    _renumber(module.chapters)
    db.commit()
    _remove_all(upload_dir, names)


def _ensure_syllabus(module: Module) -> Syllabus:
    if module.syllabus is None:
        module.syllabus = Syllabus(content="")
    return module.syllabus


def update_syllabus(
    db: Session,
    module: Module,
    content: Optional[str],
    files: Optional[list[FileRef]],
    upload_dir: str,
) -> Syllabus:
    syllabus = _ensure_syllabus(module)
    if content is not None:
        syllabus.content = content

    names: list[str] = []
    current = list(syllabus.files)
    kept = _pick_files(current, files, set()) if files is not None else current
    for f in current:
        if f in kept:
            f.temporary = False
        else:
            names.append(f.stored_name)
    syllabus.files = kept

    db.commit()
    _remove_all(upload_dir, names)
    db.refresh(syllabus)
    return syllabus


def add_reference(db: Session, module: Module, title: str, description: str = "") -> Reference:
    title = _require_title(title, "title", "Reference")
    r = Reference(title=title, description=description or "", position=len(module.references))
    module.references.append(r)
    db.commit()
    db.refresh(r)
    return r


def update_reference(
    db: Session, module: Module, index: int, title: Optional[str], description: Optional[str]
) -> Reference:
    r = _reference_at(module, index)
    if title:
        r.title = _require_title(title, "title", "Reference")
    if description is not None:
        r.description = description
    for f in r.files:
        f.temporary = False
    db.commit()
    db.refresh(r)
    return r


def delete_reference(db: Session, module: Module, index: int, upload_dir: str) -> None:
    r = _reference_at(module, index)
    names = [f.stored_name for f in r.files]
    module.references.remove(r)
    _renumber(module.references)
    db.commit()
    _remove_all(upload_dir, names)


# ---- Files ----

def check_upload_target(module: Module, target: str, index: Optional[int]) -> None:
    """Fail before anything is written to disk; a chapter index one past the end is allowed."""
    if target == "chapter":
        if index is None or index < 0 or index > len(module.chapters):
            raise NotFoundError("Chapter not found")
    elif target == "reference":
        _reference_at(module, index if index is not None else -1)
    elif target != "syllabus":
        raise ValidationError(f"Unknown upload target: {target}", field="target")


def add_file(
    db: Session,
    module: Module,
    *,
    target: str,
    index: Optional[int],
    stored_name: str,
    original_name: str,
    size: int,
    file_type: str,
) -> ContentFile:
    """Attach an uploaded file as temporary until its section is saved."""
    f = ContentFile(
        module_id=module.id,
        path=f"/uploads/{stored_name}",
        stored_name=stored_name,
        original_name=original_name,
        size=size,
        file_type=file_type or "pdf",
        temporary=True,
    )

    if target == "chapter":
        if index is not None and index == len(module.chapters):
            module.chapters.append(Chapter(title=f"Chapter {index + 1}", content="", position=index))
        _chapter_at(module, index if index is not None else -1).files.append(f)
    elif target == "syllabus":
        _ensure_syllabus(module).files.append(f)
    elif target == "reference":
        _reference_at(module, index if index is not None else -1).files.append(f)
    else:
        raise ValidationError(f"Unknown upload target: {target}", field="target")

    db.commit()
    db.refresh(f)
    return f


def get_file(db: Session, file_id: int) -> ContentFile | None:
    return db.query(ContentFile).filter(ContentFile.id == file_id).first()


def discard_temporary_files(db: Session, module: Module, upload_dir: str) -> int:
    temp = (
        db.query(ContentFile)
        .filter(ContentFile.module_id == module.id, ContentFile.temporary.is_(True))
        .all()
    )
    names = [f.stored_name for f in temp]
    for f in temp:
        db.delete(f)
    db.commit()
    _remove_all(upload_dir, names)
    return len(temp)


def purge_stale_temporary_files(db: Session, cutoff: datetime, upload_dir: str) -> int:
    stale = (
        db.query(ContentFile)
        .filter(ContentFile.temporary.is_(True), ContentFile.uploaded_at < cutoff)
        .all()
    )
    names = [f.stored_name for f in stale]
    for f in stale:
        db.delete(f)
    db.commit()
    _remove_all(upload_dir, names)
    if stale:
        logger.info("Purged %d stale temporary files", len(stale))
    return len(stale)
