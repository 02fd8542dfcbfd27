from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from app.api.deps import get_current_user
from app.core.database import get_db
from app.models import Analysis, Patient, User
from app.schemas import PatientCreate, PatientResponse
from app.schemas.patient import PatientAnalysisItem
from app.services.job_store import count_results

router = APIRouter(prefix="/api/patients", tags=["patients"])


def _patient_response(db: Session, patient: Patient) -> PatientResponse:
    analyses = db.exec(
        select(Analysis).where(Analysis.patient_id == patient.id).order_by(Analysis.created_at.desc())
    ).all()
    return PatientResponse(
        **patient.model_dump(exclude={"doctor_id"}),
        analyses=[
            PatientAnalysisItem(
                id=a.id,
                title=a.title,
                status=a.status,
                ai_confidence_score=a.ai_confidence_score,
                results_count=count_results(db, a.id),
                created_at=a.created_at,
            )
            for a in analyses
        ],
    )


@router.get("", response_model=list[PatientResponse])
def list_patients(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    patients = db.exec(
        select(Patient).where(Patient.doctor_id == user.id).order_by(Patient.created_at.desc(), Patient.id.desc())
    ).all()
    return [_patient_response(db, p) for p in patients]


@router.post("", response_model=PatientResponse, status_code=201)
def create_patient(body: PatientCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    patient = Patient(doctor_id=user.id, **body.model_dump())
    db.add(patient)
    db.commit()
    db.refresh(patient)
    return _patient_response(db, patient)


@router.get("/{patient_id}", response_model=PatientResponse)
def get_patient(patient_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    patient = db.get(Patient, patient_id)
    if not patient or patient.doctor_id != user.id:
        raise HTTPException(status_code=404, detail="Patient not found.")
    return _patient_response(db, patient)
