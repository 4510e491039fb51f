"""Tests for prescription authoring and resolution."""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from liftcoach.api.v1.errors import MISSING_MAX_DETAIL
from liftcoach.core.errors import (
    LiftNotFoundError,
    MaxNotFoundError,
    PrescriptionNotFoundError,
    ValidationError,
)
from liftcoach.models.prescription import Prescription
from liftcoach.models.user import User
from liftcoach.services.enrollment_service import EnrollmentService
from liftcoach.services.prescription_service import PrescriptionService


class TestResolve:
    async def test_fixed_percent_of(
        self, db_session: AsyncSession, test_user: User, program: dict, training_maxes
    ):
        resolved = await PrescriptionService(db_session).resolve(
            program["squat_rx"].id, test_user.id
        )

        assert resolved.lift.slug == "squat"
        assert [(s.weight, s.target_reps) for s in resolved.sets] == [(340.0, 5)] * 3

    async def test_ramp(
        self, db_session: AsyncSession, test_user: User, program: dict, training_maxes
    ):
        resolved = await PrescriptionService(db_session).resolve(
            program["bench_rx"].id, test_user.id
        )

        assert [s.weight for s in resolved.sets] == [250, 300, 350, 400, 450]
        assert [s.is_work_set for s in resolved.sets] == [False, False, True, True, True]

    async def test_missing_max(self, db_session: AsyncSession, test_user: User, program: dict):
        with pytest.raises(MaxNotFoundError):
            await PrescriptionService(db_session).resolve(program["squat_rx"].id, test_user.id)

    async def test_unknown_prescription(self, db_session: AsyncSession, test_user: User):
        with pytest.raises(PrescriptionNotFoundError):
            await PrescriptionService(db_session).resolve(uuid.uuid4(), test_user.id)

    async def test_lookup_based_uses_program_weekly_lookup(
        self,
        db_session: AsyncSession,
        test_user: User,
        program: dict,
        training_maxes,
        lookup_tables: dict,
    ):
        """Enrolled users resolve LOOKUP_BASED loads against their current week."""
        program["program"].weekly_lookup_id = lookup_tables["weekly"].id
        rx = Prescription(
            lift_id=program["lifts"]["squat"].id,
            load_strategy={"type": "LOOKUP_BASED", "rounding_increment": 5},
            set_scheme={"type": "FIXED", "sets": 3, "reps": 5},
        )
        db_session.add(rx)
        await db_session.commit()
        await EnrollmentService(db_session).enroll(test_user.id, program["program"].id)

        resolved = await PrescriptionService(db_session).resolve(rx.id, test_user.id)

        assert [s.weight for s in resolved.sets] == [260.0, 300.0, 340.0]
        assert [s.target_reps for s in resolved.sets] == [5, 5, 5]

    async def test_daily_lookup_follows_current_day(
        self,
        db_session: AsyncSession,
        test_user: User,
        program: dict,
        training_maxes,
        lookup_tables: dict,
    ):
        """bench-day is LIGHT (80%) in the daily lookup; squat-day is 100%."""
        program["program"].daily_lookup_id = lookup_tables["daily"].id
        rx = Prescription(
            lift_id=program["lifts"]["bench"].id,
            load_strategy={"type": "LOOKUP_BASED", "percentage": 85, "rounding_increment": 5},
            set_scheme={"type": "FIXED", "sets": 1, "reps": 5},
        )
        db_session.add(rx)
        await db_session.commit()
        enrollment = EnrollmentService(db_session)
        await enrollment.enroll(test_user.id, program["program"].id)
        service = PrescriptionService(db_session)

        # Day 0 of week 1 is squat-day
        resolved = await service.resolve(rx.id, test_user.id)
        assert resolved.sets[0].weight == 425

        await enrollment.advance_day(test_user.id)
        resolved = await service.resolve(rx.id, test_user.id)
        assert resolved.sets[0].weight == 340

        resolved = await service.resolve(rx.id, test_user.id, day_slug="squat-day")
        assert resolved.sets[0].weight == 425

    async def test_resolve_endpoint_accepts_day(
        self,
        auth_client: AsyncClient,
        db_session: AsyncSession,
        test_user: User,
        program: dict,
        training_maxes,
        lookup_tables: dict,
    ):
        program["program"].daily_lookup_id = lookup_tables["daily"].id
        rx = Prescription(
            lift_id=program["lifts"]["bench"].id,
            load_strategy={"type": "LOOKUP_BASED", "percentage": 85, "rounding_increment": 5},
            set_scheme={"type": "FIXED", "sets": 1, "reps": 5},
        )
        db_session.add(rx)
        await db_session.commit()
        await EnrollmentService(db_session).enroll(test_user.id, program["program"].id)
        await db_session.commit()

        response = await auth_client.get(
            f"/api/v1/prescriptions/{rx.id}/resolve",
            params={"user_id": str(test_user.id), "day": "bench-day"},
        )

        assert response.status_code == 200
        assert response.json()["sets"][0]["weight"] == 340


class TestResolveBatch:
    async def test_partial_failure(
        self, db_session: AsyncSession, test_user: User, program: dict, training_maxes
    ):
        missing = uuid.uuid4()
        results = await PrescriptionService(db_session).resolve_batch(
            [program["squat_rx"].id, missing, program["bench_rx"].id], test_user.id
        )

        assert [r.status for r in results] == ["ok", "error", "ok"]
        assert results[1].prescription_id == missing
        assert results[1].error
        assert results[2].resolved.sets[-1].weight == 450

    async def test_api_reports_totals(
        self, auth_client: AsyncClient, test_user: User, program: dict, training_maxes
    ):
        response = await auth_client.post(
            "/api/v1/prescriptions/resolve",
            json={
                "user_id": str(test_user.id),
                "prescription_ids": [str(program["squat_rx"].id), str(uuid.uuid4())],
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total_ok"] == 1
        assert data["total_errors"] == 1

    async def test_api_rejects_oversized_batch(self, auth_client: AsyncClient, test_user: User):
        response = await auth_client.post(
            "/api/v1/prescriptions/resolve",
            json={
                "user_id": str(test_user.id),
                "prescription_ids": [str(uuid.uuid4()) for _ in range(101)],
            },
        )

        assert response.status_code == 422


class TestResolveEndpoint:
    async def test_resolve(
        self, auth_client: AsyncClient, test_user: User, program: dict, training_maxes
    ):
        response = await auth_client.get(
            f"/api/v1/prescriptions/{program['squat_rx'].id}/resolve",
            params={"user_id": str(test_user.id)},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["lift"]["slug"] == "squat"
        assert len(data["sets"]) == 3

    async def test_missing_max_is_400(
        self, auth_client: AsyncClient, test_user: User, program: dict
    ):
        response = await auth_client.get(
            f"/api/v1/prescriptions/{program['squat_rx'].id}/resolve",
            params={"user_id": str(test_user.id)},
        )

        assert response.status_code == 400
        assert response.json()["detail"] == MISSING_MAX_DETAIL

    async def test_unknown_is_404(self, auth_client: AsyncClient, test_user: User):
        response = await auth_client.get(
            f"/api/v1/prescriptions/{uuid.uuid4()}/resolve",
            params={"user_id": str(test_user.id)},
        )

        assert response.status_code == 404


class TestCreatePrescription:
    async def test_default_increment_filled(self, db_session: AsyncSession, lifts):
        rx = await PrescriptionService(db_session).create_prescription(
            lifts["squat"].id,
            {"type": "PERCENT_OF", "reference_type": "TRAINING_MAX", "percentage": 80},
            {"type": "FIXED", "sets": 5, "reps": 5},
        )

        assert rx.load_strategy["rounding_increment"] == 2.5
        assert rx.set_scheme == {"type": "FIXED", "sets": 5, "reps": 5}

    async def test_percentage_out_of_range(self, db_session: AsyncSession, lifts):
        with pytest.raises(ValidationError):
            await PrescriptionService(db_session).create_prescription(
                lifts["squat"].id,
                {"type": "PERCENT_OF", "reference_type": "ONE_RM", "percentage": 0.5},
                {"type": "FIXED", "sets": 5, "reps": 5},
            )

    async def test_invalid_scheme(self, db_session: AsyncSession, lifts):
        with pytest.raises(ValidationError) as exc_info:
            await PrescriptionService(db_session).create_prescription(
                lifts["squat"].id,
                {"type": "PERCENT_OF", "reference_type": "ONE_RM", "percentage": 80},
                {"type": "PYRAMID", "sets": 5},
            )
        assert exc_info.value.field == "set_scheme"

    async def test_unknown_lift(self, db_session: AsyncSession):
        with pytest.raises(LiftNotFoundError):
            await PrescriptionService(db_session).create_prescription(
                uuid.uuid4(),
                {"type": "PERCENT_OF", "reference_type": "ONE_RM", "percentage": 80},
                {"type": "FIXED", "sets": 5, "reps": 5},
            )

    async def test_api_admin_only(self, auth_client: AsyncClient, lifts):
        response = await auth_client.post(
            "/api/v1/prescriptions",
            json={
                "lift_id": str(lifts["squat"].id),
                "load_strategy": {"type": "PERCENT_OF", "reference_type": "ONE_RM", "percentage": 80},
                "set_scheme": {"type": "FIXED", "sets": 5, "reps": 5},
            },
        )

        assert response.status_code == 403

    async def test_api_create(self, admin_client: AsyncClient, lifts):
        response = await admin_client.post(
            "/api/v1/prescriptions",
            json={
                "lift_id": str(lifts["bench"].id),
                "load_strategy": {"type": "PERCENT_OF", "reference_type": "ONE_RM", "percentage": 80},
                "set_scheme": {"type": "MRS", "target_total_reps": 25, "min_reps_per_set": 3},
                "rest_seconds": 90,
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["load_strategy"]["rounding_increment"] == 2.5
        assert data["set_scheme"]["type"] == "MRS"
        assert data["rest_seconds"] == 90

    async def test_api_bad_percentage_is_400(self, admin_client: AsyncClient, lifts):
        response = await admin_client.post(
            "/api/v1/prescriptions",
            json={
                "lift_id": str(lifts["bench"].id),
                "load_strategy": {"type": "PERCENT_OF", "reference_type": "ONE_RM", "percentage": 120},
                "set_scheme": {"type": "FIXED", "sets": 3, "reps": 5},
            },
        )

        assert response.status_code == 400
