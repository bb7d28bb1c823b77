"""
QIDO-RS / WADO-RS style endpoints proxying to the managed imaging datastore.

Study identifiers in the retrieval paths are the datastore's image set ids;
series and instance identifiers name image frames inside that image set.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response

from dicom_gateway.errors import NotFoundError, SinkUnavailableError
from dicom_gateway.imaging import HealthImagingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dicomweb", tags=["dicomweb"])


def get_imaging(request: Request) -> HealthImagingService:
    factory = request.app.state.imaging_factory
    try:
        return factory()
    except ValueError as e:
        raise HTTPException(status_code=503, detail=str(e))


def study_filters(
    patient_id: Optional[str] = None,
    study_date: Optional[str] = None,
    study_uid: Optional[str] = None,
) -> List[Dict[str, Any]]:
    filters: List[Dict[str, Any]] = []
    if patient_id:
        filters.append({"values": [{"DICOMPatientId": patient_id}], "operator": "EQUAL"})
    if study_date:
        filters.append(
            {
                "values": [
                    {"DICOMStudyDateAndTime": {"DICOMStudyDate": study_date, "DICOMStudyTime": "000000"}},
                    {"DICOMStudyDateAndTime": {"DICOMStudyDate": study_date, "DICOMStudyTime": "235959"}},
                ],
                "operator": "BETWEEN",
            }
        )
    if study_uid:
        filters.append({"values": [{"DICOMStudyInstanceUID": study_uid}], "operator": "EQUAL"})
    return filters


def _modality_matches(summary: Dict[str, Any], modality: str) -> bool:
    return summary.get("DICOMTags", {}).get("DICOMSeriesModality") == modality


def _dicom_response(data: bytes, filename: str) -> Response:
    return Response(
        content=data,
        media_type="application/dicom",
        headers={"Content-Disposition": f'attachment; filename="{filename}.dcm"'},
    )


@router.get("/studies")
def search_studies(
    patient_id: Optional[str] = Query(None, alias="PatientID"),
    study_date: Optional[str] = Query(None, alias="StudyDate"),
    modality: Optional[str] = Query(None, alias="Modality"),
    imaging: HealthImagingService = Depends(get_imaging),
):
    """QIDO-RS: search for studies by patient, date and modality."""
    try:
        results = imaging.search_image_sets(study_filters(patient_id, study_date))
    except SinkUnavailableError as e:
        logger.error("QIDO-RS error: %s", e)
        raise HTTPException(status_code=502, detail="Failed to search studies")

    if modality:
        results = [summary for summary in results if _modality_matches(summary, modality)]
    return results


@router.get("/studies/{study_uid}/series")
def search_series(study_uid: str, imaging: HealthImagingService = Depends(get_imaging)):
    """QIDO-RS: search for the series of one study."""
    try:
        return imaging.search_image_sets(study_filters(study_uid=study_uid))
    except SinkUnavailableError as e:
        logger.error("QIDO-RS error: %s", e)
        raise HTTPException(status_code=502, detail="Failed to search series")


@router.get("/studies/{study_uid}")
def retrieve_study(study_uid: str, imaging: HealthImagingService = Depends(get_imaging)):
    """WADO-RS: image set properties of a study."""
    try:
        return imaging.get_image_set(study_uid)
    except NotFoundError:
        raise HTTPException(status_code=404, detail=f"Study {study_uid} not found")
    except SinkUnavailableError as e:
        logger.error("WADO-RS error: %s", e)
        raise HTTPException(status_code=502, detail="Failed to retrieve study")


@router.get("/studies/{study_uid}/series/{series_uid}")
def retrieve_series(
    study_uid: str, series_uid: str, imaging: HealthImagingService = Depends(get_imaging)
):
    """WADO-RS: frame data of a series."""
    try:
        data = imaging.get_image_frame(study_uid, series_uid)
    except NotFoundError:
        raise HTTPException(status_code=404, detail=f"Series {series_uid} not found")
    except SinkUnavailableError as e:
        logger.error("WADO-RS error: %s", e)
        raise HTTPException(status_code=502, detail="Failed to retrieve series")
    return _dicom_response(data, series_uid)


@router.get("/studies/{study_uid}/series/{series_uid}/instances/{instance_uid}")
def retrieve_instance(
    study_uid: str,
    series_uid: str,
    instance_uid: str,
    imaging: HealthImagingService = Depends(get_imaging),
):
    """WADO-RS: frame data of a single instance."""
    try:
        data = imaging.get_image_frame(study_uid, f"{series_uid}/{instance_uid}")
    except NotFoundError:
        raise HTTPException(status_code=404, detail=f"Instance {instance_uid} not found")
    except SinkUnavailableError as e:
        logger.error("WADO-RS error: %s", e)
        raise HTTPException(status_code=502, detail="Failed to retrieve instance")
    return _dicom_response(data, instance_uid)
