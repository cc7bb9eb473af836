"""Tests for the HTTP API."""

import asyncio

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select

from livability.config import get_settings
from livability.database import get_db
from livability.dependencies import get_session_maker
from livability.errors import PoiSourceError
from livability.geo import Bounds
from livability.main import app
from livability.models import HeatCell, Job
from livability.services import scheduler
from livability.services.heatmap_processor import HeatmapChunkProcessor
from livability.services.scheduler import _background_tasks


@pytest_asyncio.fixture
async def client(session_maker, fake_source, settings):
    """ASGI client wired to the test database and fake POI source."""

    async def override_get_db():
        async with session_maker() as session:
            yield session
            await session.commit()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_maker] = lambda: session_maker
    app.dependency_overrides[get_settings] = lambda: settings
    app.state.poi_source = fake_source
    app.state.processor = HeatmapChunkProcessor(session_maker, fake_source, settings)
    app.state.worker = None

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    # Let detached auto-scheduling tasks finish before the database goes away
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)
    app.dependency_overrides.clear()


class TestRoot:
    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["name"] == "Livability Heatmap"

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["database"] == "ok"
        assert data["poi_provider"] == "fake"

    @pytest.mark.asyncio
    async def test_metrics(self, client, db):
        db.add(HeatCell(lat=21.16, lng=-86.85, score=50, grid_step=0.01))
        await db.commit()

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert 'livability_jobs{status="pending"} 0.0' in response.text
        assert 'livability_heat_cells{grid_step="0.01"} 1.0' in response.text


class TestScoreEndpoint:
    """Test GET /api/score."""

    @pytest.mark.asyncio
    async def test_score(self, client):
        response = await client.get("/api/score", params={"lat": 21.161, "lng": -86.851})

        assert response.status_code == 200
        assert response.headers["cache-control"] == "public, max-age=3600"
        data = response.json()
        assert 0 <= data["overall"] <= 100
        assert "computedAt" in data
        groceries = next(c for c in data["categories"] if c["id"] == "groceries")
        assert groceries["count"] == 1
        assert "nearestDistance" in groceries

    @pytest.mark.asyncio
    async def test_score_schedules_coverage_in_background(self, client, db):
        await client.get("/api/score", params={"lat": 21.161, "lng": -86.851})
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)

        jobs = (await db.execute(select(Job))).scalars().all()
        assert len(jobs) == 1
        assert jobs[0].status == "pending"

    @pytest.mark.asyncio
    async def test_out_of_range(self, client):
        response = await client.get("/api/score", params={"lat": 91, "lng": 0})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_missing_params(self, client):
        response = await client.get("/api/score", params={"lat": 21.1})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_provider_failure(self, client, fake_source):
        fake_source.fail_with = PoiSourceError("timeout")
        response = await client.get("/api/score", params={"lat": 21.161, "lng": -86.851})
        assert response.status_code == 502


class TestHeatmapEndpoint:
    """Test GET /api/heatmap and scheduling."""

    @pytest.mark.asyncio
    async def test_covered_viewport(self, client, db):
        db.add_all(
            [
                HeatCell(lat=21.10, lng=-86.90, score=80, grid_step=0.01),
                HeatCell(lat=21.20, lng=-86.80, score=70, grid_step=0.01),
                HeatCell(lat=21.15, lng=-86.85, score=10, grid_step=0.01),
            ]
        )
        await db.commit()

        response = await client.get(
            "/api/heatmap",
            params={"minLat": 21.1, "maxLat": 21.2, "minLng": -86.9, "maxLng": -86.8},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["gridStep"] == 0.01
        # Cells below the visible threshold are not served
        assert sorted(c["score"] for c in data["cells"]) == [70, 80]
        assert "jobStatus" not in data
        assert response.headers["cache-control"] == "public, max-age=300"

    @pytest.mark.asyncio
    async def test_uncovered_city_viewport_schedules_city_job(self, client, db):
        response = await client.get(
            "/api/heatmap",
            params={"minLat": 21.1, "maxLat": 21.2, "minLng": -86.9, "maxLng": -86.8},
        )

        data = response.json()
        assert data["cells"] == []
        assert data["jobStatus"]["status"] == "pending"
        assert response.headers["cache-control"] == "no-cache"
        job = await scheduler.get_job(db, data["jobStatus"]["jobId"])
        assert job.city_id is not None

    @pytest.mark.asyncio
    async def test_uncovered_unknown_area_schedules_regional_job(self, client, db):
        response = await client.get(
            "/api/heatmap",
            params={"minLat": 21.5, "maxLat": 21.52, "minLng": -86.86, "maxLng": -86.84},
        )

        # The fake source has no POIs here, so nothing is scheduled
        assert "jobStatus" not in response.json()
        assert (await db.execute(select(Job))).scalars().all() == []

    @pytest.mark.asyncio
    async def test_inverted_bounds(self, client):
        response = await client.get(
            "/api/heatmap",
            params={"minLat": 21.2, "maxLat": 21.1, "minLng": -86.9, "maxLng": -86.8},
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_schedule_new_then_existing(self, client):
        first = await client.post("/api/heatmap/schedule", json={"citySlug": "cancun"})
        second = await client.post("/api/heatmap/schedule", json={"citySlug": "cancun"})

        assert first.status_code == 201
        assert first.json()["isNew"] is True
        assert second.status_code == 200
        assert second.json()["jobId"] == first.json()["jobId"]

    @pytest.mark.asyncio
    async def test_schedule_unknown_city(self, client):
        response = await client.post("/api/heatmap/schedule", json={"citySlug": "atlantis"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_schedule_rejects_oversized_grid(self, client, db):
        response = await client.post(
            "/api/heatmap/schedule", json={"citySlug": "cancun", "gridStep": 0.00001}
        )

        assert response.status_code == 400
        assert "exceeds the limit" in response.json()["detail"]
        assert (await db.execute(select(Job))).scalars().all() == []

    @pytest.mark.asyncio
    async def test_custom_grid_step_never_schedules(self, client, db):
        response = await client.get(
            "/api/heatmap",
            params={
                "minLat": 21.1,
                "maxLat": 21.2,
                "minLng": -86.9,
                "maxLng": -86.8,
                "gridStep": 0.00001,
            },
        )

        assert response.status_code == 200
        assert response.json()["cells"] == []
        assert "jobStatus" not in response.json()
        assert (await db.execute(select(Job))).scalars().all() == []


class TestJobsEndpoint:
    """Test job status and cron processing."""

    @pytest.mark.asyncio
    async def test_get_job(self, client):
        scheduled = (await client.post("/api/heatmap/schedule", json={"citySlug": "cancun"})).json()

        response = await client.get(f"/api/jobs/{scheduled['jobId']}")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "pending"
        assert data["type"] == "heatmap_compute"
        assert data["totalItems"] > 0
        assert data["progress"] == 0

    @pytest.mark.asyncio
    async def test_missing_job(self, client):
        response = await client.get("/api/jobs/9999")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_process_requires_secret(self, client, settings):
        settings.cron_secret = "s3cret"

        assert (await client.post("/api/jobs/process")).status_code == 401
        response = await client.post(
            "/api/jobs/process", headers={"Authorization": "Bearer s3cret"}
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_process_runs_one_chunk(self, client, db, settings):
        bounds = Bounds(min_lat=21.155, max_lat=21.165, min_lng=-86.855, max_lng=-86.845)
        scheduled = await scheduler.schedule_region_job(db, bounds, settings.heatmap_grid_step)

        response = await client.post("/api/jobs/process")

        data = response.json()
        assert data["jobId"] == scheduled.job_id
        assert data["processed"] > 0
        assert data["hasMore"] is False
        assert data["progress"] == 100
