"""Certificate integration: conditional issuance, lookup and deletion."""

import logging
from typing import Optional

from assessment.clients.base import ExamBackend
from assessment.exceptions import CertificateError
from assessment.models.grading import Certificate, CertificateOutcome, GradeResult

logger = logging.getLogger("assessment.certificate_service")


class CertificateService:
    """Wraps the certificate issuer. Issuance failures never escape as exceptions."""

    def __init__(self, backend: ExamBackend):
        self.backend = backend

    async def issue_if_eligible(
        self, learner_id: str, grade: GradeResult, requested: bool
    ) -> CertificateOutcome:
        """
        Request a certificate when the grade passes and issuance was requested.

        Returns:
            CertificateOutcome; `error` carries the learner-facing message on failure
        """
        if not requested or not grade.passed:
            return CertificateOutcome(attempted=False)

        if not grade.curriculum_unit_id:
            err = CertificateError(learner_id, None, "grade carries no curriculum unit")
            logger.warning(err.message)
            return CertificateOutcome(attempted=True, error=err.user_message)

        try:
            url = await self.backend.issue_certificate(learner_id, grade.curriculum_unit_id)
        except Exception as e:
            err = CertificateError(learner_id, grade.curriculum_unit_id, str(e) or type(e).__name__)
            logger.error(f"Certificate generation failed: {err.message}")
            return CertificateOutcome(attempted=True, error=err.user_message)

        if not url:
            err = CertificateError(learner_id, grade.curriculum_unit_id, "no certificate url returned")
            logger.error(err.message)
            return CertificateOutcome(attempted=True, error=err.user_message)

        logger.info(f"Issued certificate for learner {learner_id}, unit {grade.curriculum_unit_id}")
        return CertificateOutcome(attempted=True, url=url)

    async def find(self, learner_id: str, curriculum_unit_id: Optional[str]) -> Optional[Certificate]:
        """Return the learner's certificate for a curriculum unit, if any."""
        if not curriculum_unit_id:
            return None
        certificates = await self.backend.list_certificates(learner_id)
        for cert in certificates:
            if cert.curriculum_unit_id == curriculum_unit_id:
                return cert
        return None

    async def delete(self, learner_id: str, curriculum_unit_id: str) -> None:
        await self.backend.delete_certificate(learner_id, curriculum_unit_id)
        logger.info(f"Deleted certificate for learner {learner_id}, unit {curriculum_unit_id}")
