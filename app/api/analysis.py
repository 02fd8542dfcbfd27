"""Analiz (job) uç noktaları: oluşturma, listeleme, sonuç, durum, yeniden işleme."""
import logging
import uuid
from pathlib import Path

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile
from sqlmodel import Session, select

from app.api.deps import get_current_user, get_notifier
from app.core.config import settings
from app.core.database import get_db
from app.core.notifier import CompletionNotifier
from app.models import Analysis, AnalysisResult, MedicalImage, Patient, Subscription, User
from app.models.analysis import STATUS_PENDING, TERMINAL_STATUSES
from app.schemas import AnalysisDetail, AnalysisListItem, AnalysisStatusResponse
from app.schemas.analysis import AnalysisCreated, AnalysisResultItem, MedicalImageItem, PatientSummary
from app.services import job_store
from app.services.analyze import CATEGORY_NAMES, process_analysis

log = logging.getLogger("medclinic")

router = APIRouter(prefix="/api/analysis", tags=["analysis"])

MAX_IMAGES = 5
MAX_DOCUMENTS = 3
DOCUMENT_MIME_TYPES = {"application/pdf", "image/jpeg", "image/png", "image/gif"}
IMAGE_TYPE_BY_MIME = {
    "image/jpeg": "photo",
    "image/jpg": "photo",
    "image/png": "photo",
    "image/gif": "photo",
    "image/bmp": "photo",
    "image/webp": "photo",
    "application/pdf": "other",
}
MAIN_DIAGNOSIS = CATEGORY_NAMES["diagnostico_principal"]


def _upload_dir() -> Path:
    path = Path(settings.upload_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


def _get_owned_or_404(db: Session, analysis_id: str, user: User) -> Analysis:
    analysis = job_store.get_owned(db, analysis_id, user.id)
    if analysis is None:
        raise HTTPException(status_code=404, detail="Analysis not found.")
    return analysis


def _patient_summary(db: Session, patient_id: int | None) -> PatientSummary | None:
    if patient_id is None:
        return None
    patient = db.get(Patient, patient_id)
    if patient is None:
        return None
    return PatientSummary(id=patient.id, name=patient.name, email=patient.email)


def _results(db: Session, analysis_id: str) -> list[AnalysisResult]:
    return list(
        db.exec(
            select(AnalysisResult).where(AnalysisResult.analysis_id == analysis_id).order_by(AnalysisResult.id)
        ).all()
    )


def _images(db: Session, analysis_id: str) -> list[MedicalImage]:
    return list(db.exec(select(MedicalImage).where(MedicalImage.analysis_id == analysis_id).order_by(MedicalImage.id)).all())


def _detail(db: Session, analysis: Analysis) -> AnalysisDetail:
    return AnalysisDetail(
        **analysis.model_dump(),
        patient=_patient_summary(db, analysis.patient_id),
        results=[AnalysisResultItem(**r.model_dump(exclude={"analysis_id"})) for r in _results(db, analysis.id)],
        images=[MedicalImageItem(**i.model_dump(exclude={"analysis_id", "file_path", "file_size"})) for i in _images(db, analysis.id)],
    )


def _read_uploads(images: list[UploadFile], documents: list[UploadFile]) -> list[tuple[str, UploadFile, bytes]]:
    """Tüm dosyaları okur ve boyutunu kontrol eder; iş satırı bundan önce oluşmaz."""
    max_bytes = settings.upload_max_mb * 1024 * 1024
    staged = []
    for field, uploads in (("images", images), ("documents", documents)):
        for upload in uploads:
            content = upload.file.read()
            if len(content) > max_bytes:
                raise HTTPException(status_code=400, detail=f"File too large (max {settings.upload_max_mb} MB): {upload.filename}")
            staged.append((field, upload, content))
    return staged


def _write_upload(analysis_id: str, field: str, upload: UploadFile, content: bytes) -> MedicalImage:
    suffix = Path(upload.filename or "").suffix.lower()
    filename = f"{field}-{uuid.uuid4().hex}{suffix}"
    path = _upload_dir() / filename
    path.write_bytes(content)
    mime = upload.content_type or "application/octet-stream"
    return MedicalImage(
        analysis_id=analysis_id,
        filename=filename,
        original_name=upload.filename or filename,
        file_path=str(path),
        file_size=len(content),
        mime_type=mime,
        image_type=IMAGE_TYPE_BY_MIME.get(mime, "other") if field == "images" else "other",
    )


def _validate_uploads(images: list[UploadFile], documents: list[UploadFile]) -> None:
    if len(images) > MAX_IMAGES:
        raise HTTPException(status_code=400, detail=f"At most {MAX_IMAGES} images.")
    if len(documents) > MAX_DOCUMENTS:
        raise HTTPException(status_code=400, detail=f"At most {MAX_DOCUMENTS} documents.")
    for f in images:
        if not (f.content_type or "").startswith("image/"):
            raise HTTPException(status_code=400, detail="Only images are allowed in 'images'.")
    for f in documents:
        if (f.content_type or "") not in DOCUMENT_MIME_TYPES:
            raise HTTPException(status_code=400, detail="Only PDF and images are allowed in 'documents'.")


@router.get("", response_model=list[AnalysisListItem])
def list_analyses(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    analyses = db.exec(select(Analysis).where(Analysis.doctor_id == user.id).order_by(Analysis.created_at.desc())).all()
    items = []
    for a in analyses:
        results = _results(db, a.id)
        main = next((r.result for r in results if r.category == MAIN_DIAGNOSIS), None)
        items.append(
            AnalysisListItem(
                id=a.id,
                title=a.title,
                description=a.description,
                symptoms=a.symptoms,
                status=a.status,
                ai_confidence_score=a.ai_confidence_score,
                created_at=a.created_at,
                updated_at=a.updated_at,
                patient=_patient_summary(db, a.patient_id),
                results_count=len(results),
                images_count=len(_images(db, a.id)),
                diagnosis=main or a.title,
            )
        )
    return items


@router.post("", response_model=AnalysisCreated, status_code=201)
def create_analysis(
    background_tasks: BackgroundTasks,
    title: str | None = Form(None),
    description: str | None = Form(None),
    symptoms: str | None = Form(None),
    patient_id: int | None = Form(None),
    images: list[UploadFile] = File(default=[]),
    documents: list[UploadFile] = File(default=[]),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: CompletionNotifier = Depends(get_notifier),
):
    subscription = db.exec(select(Subscription).where(Subscription.user_id == user.id)).first()
    if subscription and subscription.analysis_used >= subscription.analysis_limit:
        raise HTTPException(
            status_code=400,
            detail=f"Analysis limit reached for your current plan ({subscription.analysis_used}/{subscription.analysis_limit}).",
        )
    title = (title or "").strip() or None
    description = (description or "").strip() or None
    symptoms = (symptoms or "").strip() or None
    if not (title or description or symptoms or images or documents):
        raise HTTPException(status_code=400, detail="Provide at least a title, description, symptoms or a file to analyze.")
    _validate_uploads(images, documents)
    if patient_id is not None:
        patient = db.get(Patient, patient_id)
        if not patient or patient.doctor_id != user.id:
            raise HTTPException(status_code=404, detail="Patient not found.")

    staged = _read_uploads(images, documents)

    analysis = Analysis(
        title=title or "Medical Analysis",
        description=description,
        symptoms=symptoms,
        status=STATUS_PENDING,
        patient_id=patient_id,
        doctor_id=user.id,
    )
    written: list[Path] = []
    try:
        db.add(analysis)
        db.flush()
        for field, upload, content in staged:
            image = _write_upload(analysis.id, field, upload, content)
            written.append(Path(image.file_path))
            db.add(image)
        if subscription:
            subscription.analysis_used += 1
            db.add(subscription)
        # iş, dosya kayıtları ve kota tek commit'te
        db.commit()
    except Exception:
        db.rollback()
        for path in written:
            path.unlink(missing_ok=True)
        raise
    db.refresh(analysis)

    background_tasks.add_task(process_analysis, analysis.id, notifier)
    log.info("analysis created id=%s doctor=%s files=%d", analysis.id, user.id, len(images) + len(documents))
    return AnalysisCreated(message="Analysis created.", analysis=_detail(db, analysis))


@router.get("/{analysis_id}", response_model=AnalysisDetail)
def get_analysis(analysis_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _detail(db, _get_owned_or_404(db, analysis_id, user))


@router.get("/{analysis_id}/results", response_model=AnalysisDetail)
def get_analysis_results(analysis_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _detail(db, _get_owned_or_404(db, analysis_id, user))


@router.get("/{analysis_id}/status", response_model=AnalysisStatusResponse)
def get_analysis_status(analysis_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    data = job_store.read_status(db, analysis_id, user.id)
    if data is None:
        raise HTTPException(status_code=404, detail="Analysis not found.")
    return AnalysisStatusResponse(**data)


@router.post("/{analysis_id}/reprocess", response_model=AnalysisCreated, status_code=201)
def reprocess_analysis(
    analysis_id: str,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: CompletionNotifier = Depends(get_notifier),
):
    """Terminal bir işi yeniden açmaz: aynı girdilerle yeni bir pending iş oluşturur."""
    source = _get_owned_or_404(db, analysis_id, user)
    if source.status not in TERMINAL_STATUSES:
        raise HTTPException(status_code=409, detail="Analysis is still being processed.")
    clone = Analysis(
        title=source.title,
        description=source.description,
        symptoms=source.symptoms,
        patient_id=source.patient_id,
        doctor_id=source.doctor_id,
    )
    db.add(clone)
    db.flush()
    for img in _images(db, source.id):
        db.add(MedicalImage(**img.model_dump(exclude={"id", "analysis_id", "created_at"}), analysis_id=clone.id))
    db.commit()
    db.refresh(clone)
    background_tasks.add_task(process_analysis, clone.id, notifier)
    log.info("analysis reprocess source=%s new=%s", source.id, clone.id)
    return AnalysisCreated(message="Analysis sent for reprocessing.", analysis=_detail(db, clone))


@router.delete("/{analysis_id}")
def delete_analysis(analysis_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    analysis = _get_owned_or_404(db, analysis_id, user)
    if analysis.status not in TERMINAL_STATUSES and analysis.status != STATUS_PENDING:
        raise HTTPException(status_code=409, detail="Analysis is being processed and cannot be deleted now.")
    orphan_paths = set()
    for img in _images(db, analysis.id):
        others = db.exec(
            select(MedicalImage).where(MedicalImage.file_path == img.file_path, MedicalImage.analysis_id != analysis.id)
        ).first()
        if others is None:
            orphan_paths.add(img.file_path)
        db.delete(img)
    for r in _results(db, analysis.id):
        db.delete(r)
    db.delete(analysis)
    db.commit()
    for path in orphan_paths:
        Path(path).unlink(missing_ok=True)
    return {"message": "Analysis deleted."}
