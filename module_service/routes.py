import os

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from shared.auth import UserRole, VerifiedUser, current_user, require_role
from shared.database import db_dependency
from shared.errors import NotFoundError
from . import crud
from .schemas import (
    ChapterIn,
    ChapterOut,
    ChaptersIn,
    ContentFileOut,
    DiscardOut,
    EnrollmentOut,
    ModuleDetailOut,
    ModuleSummaryOut,
    ReferenceIn,
    ReferenceOut,
    SyllabusIn,
    SyllabusOut,
    UploadOut,
    FILE_TYPES_PATTERN,
)
from .storage import display_name, save_upload, stored_path


def build_router(SessionLocal, settings) -> APIRouter:
    router = APIRouter()
    get_db = db_dependency(SessionLocal)
    teacher = require_role("teacher")
    student = require_role("student")
    upload_dir = settings.upload_dir

    # ---- Teacher: modules and content ----

    @router.get("/teacher/modules", response_model=list[ModuleSummaryOut], tags=["Modules"])
    def assigned_modules(user: VerifiedUser = Depends(teacher), db: Session = Depends(get_db)):
        return crud.list_assigned_modules(db, user.sub)

    @router.get("/teacher/modules/{module_id}", response_model=ModuleDetailOut, tags=["Modules"])
    def module_details(module_id: int, user: VerifiedUser = Depends(teacher), db: Session = Depends(get_db)):
        m = crud.get_assigned_module(db, module_id, user.sub)
        return crud.module_detail(m)

    @router.post(
        "/teacher/modules/{module_id}/chapters",
        response_model=ChapterOut,
        status_code=status.HTTP_201_CREATED,
        tags=["Modules"],
    )
    def add_chapter(
        module_id: int, payload: ChapterIn, user: VerifiedUser = Depends(teacher), db: Session = Depends(get_db)
    ):
        m = crud.get_assigned_module(db, module_id, user.sub)
        return crud.add_chapter(db, m, payload.title, payload.content)

    @router.put("/teacher/modules/{module_id}/chapters", response_model=ModuleDetailOut, tags=["Modules"])
    def update_chapters(
        module_id: int, payload: ChaptersIn, user: VerifiedUser = Depends(teacher), db: Session = Depends(get_db)
    ):
        m = crud.get_assigned_module(db, module_id, user.sub)
        return crud.module_detail(crud.update_chapters(db, m, payload.chapters, upload_dir))

    @router.delete("/teacher/modules/{module_id}/chapters/{index}", response_model=dict, tags=["Modules"])
    def delete_chapter(
        module_id: int, index: int, user: VerifiedUser = Depends(teacher), db: Session = Depends(get_db)
    ):
        m = crud.get_assigned_module(db, module_id, user.sub)
        crud.delete_chapter(db, m, index, upload_dir)
        return {"deleted": True}

    @router.put("/teacher/modules/{module_id}/syllabus", response_model=SyllabusOut, tags=["Modules"])
    def update_syllabus(
        module_id: int, payload: SyllabusIn, user: VerifiedUser = Depends(teacher), db: Session = Depends(get_db)
    ):
        m = crud.get_assigned_module(db, module_id, user.sub)
        s = crud.update_syllabus(db, m, payload.content, payload.files, upload_dir)
        return SyllabusOut(content=s.content, files=[ContentFileOut.model_validate(f) for f in s.files])

    @router.post(
        "/teacher/modules/{module_id}/references",
        response_model=ReferenceOut,
        status_code=status.HTTP_201_CREATED,
        tags=["Modules"],
    )
    def add_reference(
        module_id: int, payload: ReferenceIn, user: VerifiedUser = Depends(teacher), db: Session = Depends(get_db)
    ):
        m = crud.get_assigned_module(db, module_id, user.sub)
        return crud.add_reference(db, m, payload.title or "", payload.description or "")

    @router.put("/teacher/modules/{module_id}/references/{index}", response_model=ReferenceOut, tags=["Modules"])
    def update_reference(
        module_id: int,
        index: int,
        payload: ReferenceIn,
        user: VerifiedUser = Depends(teacher),
        db: Session = Depends(get_db),
    ):
        m = crud.get_assigned_module(db, module_id, user.sub)
        return crud.update_reference(db, m, index, payload.title, payload.description)

    @router.delete("/teacher/modules/{module_id}/references/{index}", response_model=dict, tags=["Modules"])
    def delete_reference(
        module_id: int, index: int, user: VerifiedUser = Depends(teacher), db: Session = Depends(get_db)
    ):
        m = crud.get_assigned_module(db, module_id, user.sub)
        crud.delete_reference(db, m, index, upload_dir)
        return {"deleted": True}

    @router.post("/teacher/modules/{module_id}/discard-temp-files", response_model=DiscardOut, tags=["Modules"])
    def discard_temp_files(module_id: int, user: VerifiedUser = Depends(teacher), db: Session = Depends(get_db)):
        m = crud.get_assigned_module(db, module_id, user.sub)
        removed = crud.discard_temporary_files(db, m, upload_dir)
        return DiscardOut(files_removed=removed, message=f"Successfully discarded {removed} temporary files")

    # ---- Teacher: uploads ----

    async def _upload(db: Session, user: VerifiedUser, module_id: int, target: str, index, upload, file_type, custom_name):
        m = crud.get_assigned_module(db, module_id, user.sub)
        crud.check_upload_target(m, target, index)
        name, size = await save_upload(upload_dir, upload, settings.max_file_size)
        f = crud.add_file(
            db,
            m,
            target=target,
            index=index,
            stored_name=name,
            original_name=display_name(upload.filename or name, custom_name),
            size=size,
            file_type=file_type,
        )
        return UploadOut(module_id=module_id, target=target, index=index, file=ContentFileOut.model_validate(f))

    @router.post("/teacher/modules/{module_id}/chapters/{index}/files", response_model=UploadOut, tags=["Files"])
    async def upload_chapter_file(
        module_id: int,
        index: int,
        file: UploadFile = File(...),
        file_type: str = Form(default="pdf", pattern=FILE_TYPES_PATTERN),
        custom_name: str | None = Form(default=None),
        user: VerifiedUser = Depends(teacher),
        db: Session = Depends(get_db),
    ):
        return await _upload(db, user, module_id, "chapter", index, file, file_type, custom_name)

    @router.post("/teacher/modules/{module_id}/syllabus/files", response_model=UploadOut, tags=["Files"])
    async def upload_syllabus_file(
        module_id: int,
        file: UploadFile = File(...),
        file_type: str = Form(default="pdf", pattern=FILE_TYPES_PATTERN),
        custom_name: str | None = Form(default=None),
        user: VerifiedUser = Depends(teacher),
        db: Session = Depends(get_db),
    ):
        return await _upload(db, user, module_id, "syllabus", None, file, file_type, custom_name)

    @router.post("/teacher/modules/{module_id}/references/{index}/files", response_model=UploadOut, tags=["Files"])
    async def upload_reference_file(
        module_id: int,
        index: int,
        file: UploadFile = File(...),
        file_type: str = Form(default="pdf", pattern=FILE_TYPES_PATTERN),
        custom_name: str | None = Form(default=None),
        user: VerifiedUser = Depends(teacher),
        db: Session = Depends(get_db),
    ):
        return await _upload(db, user, module_id, "reference", index, file, file_type, custom_name)

    # ---- Student ----

    @router.get("/student/available-modules", response_model=list[ModuleSummaryOut], tags=["Enrollment"])
    def available_modules(
        academic_year: str | None = Query(default=None),
        user: VerifiedUser = Depends(student),
        db: Session = Depends(get_db),
    ):
        if not academic_year:
            raise HTTPException(400, "Academic year is required. Please select an academic year.")
        return crud.list_available_modules(db, user.sub, academic_year, user.level)

    @router.post(
        "/student/enroll/{module_id}",
        response_model=EnrollmentOut,
        status_code=status.HTTP_201_CREATED,
        tags=["Enrollment"],
    )
    def enroll(module_id: int, user: VerifiedUser = Depends(student), db: Session = Depends(get_db)):
        return crud.enroll(db, module_id, user.sub)

    @router.get("/student/my-modules", response_model=list[ModuleSummaryOut], tags=["Enrollment"])
    def my_modules(user: VerifiedUser = Depends(student), db: Session = Depends(get_db)):
        return crud.list_enrolled_modules(db, user.sub)

    @router.get("/student/modules/{module_id}/content", response_model=ModuleDetailOut, tags=["Enrollment"])
    def module_content(module_id: int, user: VerifiedUser = Depends(student), db: Session = Depends(get_db)):
        m = crud.get_module(db, module_id)
        if not m:
            raise NotFoundError("Module not found")
        if not crud.is_enrolled(db, module_id, user.sub):
            raise HTTPException(403, "You are not enrolled in this module")
        return crud.module_detail(m)

    # ---- Download ----

    @router.get("/files/{file_id}", tags=["Files"])
    def download(
        file_id: int,
        download: bool = Query(default=False),
        user: VerifiedUser = Depends(current_user),
        db: Session = Depends(get_db),
    ):
        f = crud.get_file(db, file_id)
        if not f:
            raise NotFoundError("File not found")

        m = crud.get_module(db, f.module_id)
        allowed = user.role == UserRole.ADMIN
        if user.role == UserRole.TEACHER:
            allowed = m is not None and m.teacher_id == user.sub
        elif user.role == UserRole.STUDENT:
            allowed = not f.temporary and crud.is_enrolled(db, f.module_id, user.sub)
        if not allowed:
            raise HTTPException(403, "You are not authorized to access this file")

        path = stored_path(upload_dir, f.stored_name)
        if not os.path.exists(path):
            raise NotFoundError("File not found on server")

        return FileResponse(
            path,
            filename=f.original_name or f.stored_name,
            content_disposition_type="attachment" if download else "inline",
        )

    return router
