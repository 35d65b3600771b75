import pytest

from app.errors import CredentialExpired, InvalidArgument, MissingParameter, NotFound, PersistenceError, ValidationError
from app.services.backend_client import BackendError
from app.services.job_repository import JobRepository, build_job_payload, coerce_id

VALID_JOB = {
    "title": "  Engineer ",
    "description": "Build things",
    "location": "Berlin",
    "requirements": "Python",
    "company_id": "1",
    "recruiter_id": "r1",
}


@pytest.fixture
def repo(backend, tokens):
    backend.seed("companies", name="Acme", logo_url="https://backend.test/logo.png")
    return JobRepository(tokens, backend.factory)


# ---------- payload validation ----------

def test_payload_trims_coerces_and_defaults_open():
    payload = build_job_payload(VALID_JOB)
    assert payload["title"] == "Engineer"
    assert payload["company_id"] == 1
    assert payload["isOpen"] is True


def test_payload_keeps_explicit_closed():
    assert build_job_payload({**VALID_JOB, "isOpen": False})["isOpen"] is False


@pytest.mark.parametrize("value", ["false", "true", 0, 1, "no"])
def test_payload_rejects_non_boolean_open_flag(value):
    with pytest.raises(InvalidArgument) as excinfo:
        build_job_payload({**VALID_JOB, "isOpen": value})
    assert excinfo.value.fields == ["isOpen"]


def test_payload_reports_every_missing_field():
    with pytest.raises(ValidationError) as excinfo:
        build_job_payload({"title": " ", "description": "d", "company_id": "-3"})
    assert excinfo.value.fields == ["title", "location", "company_id", "recruiter_id"]
    assert str(excinfo.value) == "Missing required job fields: title, location, company_id, recruiter_id"


@pytest.mark.parametrize("value,expected", [(3, 3), ("4", 4), (" 5 ", 5), (6.0, 6), ("7.0", 7)])
def test_coerce_id_accepts_positive_integers(value, expected):
    assert coerce_id(value) == expected


@pytest.mark.parametrize("value", [None, "", "abc", 0, -1, 2.5, True, float("nan")])
def test_coerce_id_rejects_everything_else(value):
    assert coerce_id(value) is None


# ---------- create / list ----------

@pytest.mark.asyncio
async def test_create_returns_row_joined_with_company(repo, backend):
    job = await repo.create(VALID_JOB)

    assert job["isOpen"] is True
    assert job["company_id"] == 1
    assert job["company"] == {"id": 1, "name": "Acme", "logo_url": "https://backend.test/logo.png"}
    assert len(backend.tables["jobs"]) == 1


@pytest.mark.asyncio
async def test_create_with_missing_fields_touches_nothing(repo, backend, tokens):
    with pytest.raises(ValidationError):
        await repo.create({"title": "Engineer"})
    assert backend.calls == []
    assert tokens.calls == []


@pytest.mark.asyncio
async def test_list_orders_newest_first_and_applies_filters(repo, backend):
    other = backend.seed("companies", name="Globex", logo_url=None)
    await repo.create(VALID_JOB)
    await repo.create({**VALID_JOB, "title": "Senior ENGINEER", "company_id": other["id"]})
    await repo.create({**VALID_JOB, "title": "Designer", "location": "Paris"})

    everything = await repo.list()
    assert [j["id"] for j in everything] == [3, 2, 1]
    assert everything[0]["saved"] == []
    assert everything[0]["company"]["name"] == "Acme"

    assert [j["id"] for j in await repo.list(company_id=other["id"])] == [2]
    assert [j["id"] for j in await repo.list(search_query="engineer")] == [2, 1]
    assert [j["id"] for j in await repo.list(location="Berlin", search_query="eng", company_id="1")] == [1]
    assert [j["id"] for j in await repo.list(location="  ", search_query="", company_id="")] == [3, 2, 1]


@pytest.mark.asyncio
async def test_company_scenario_lists_only_that_job(repo, backend):
    acme = backend.seed("companies", name="Acme 2", logo_url=None)
    job = await repo.create({**VALID_JOB, "company_id": acme["id"]})
    await repo.create(VALID_JOB)

    jobs = await repo.list(company_id=acme["id"])
    assert [j["id"] for j in jobs] == [job["id"]]


# ---------- save / unsave ----------

@pytest.mark.asyncio
async def test_save_then_unsave_leaves_no_rows(repo, backend):
    job = await repo.create(VALID_JOB)

    saved = await repo.toggle_save("u1", job["id"], already_saved=False)
    assert saved["action"] == "saved"
    assert saved["data"]["user_id"] == "u1"

    unsaved = await repo.toggle_save("u1", job["id"], already_saved=True)
    assert unsaved == {"action": "unsaved"}
    assert backend.tables["saved_jobs"] == []


@pytest.mark.asyncio
async def test_duplicate_save_returns_existing_record(repo, backend):
    job = await repo.create(VALID_JOB)
    first = await repo.toggle_save("u1", job["id"], already_saved=False)
    second = await repo.toggle_save("u1", job["id"], already_saved=False)

    assert second["action"] == "saved"
    assert second["data"]["id"] == first["data"]["id"]
    assert len(backend.tables["saved_jobs"]) == 1


@pytest.mark.asyncio
async def test_unsave_when_not_saved_is_a_no_op(repo):
    assert await repo.toggle_save("u1", 99, already_saved=True) == {"action": "unsaved"}


@pytest.mark.asyncio
async def test_toggle_requires_both_ids(repo):
    with pytest.raises(MissingParameter) as excinfo:
        await repo.toggle_save("", None, already_saved=False)
    assert excinfo.value.fields == ["user_id", "job_id"]


@pytest.mark.asyncio
async def test_saved_jobs_are_flattened(repo):
    job = await repo.create(VALID_JOB)
    await repo.create({**VALID_JOB, "title": "Other"})
    await repo.toggle_save("u1", job["id"], already_saved=False)

    saved = await repo.list_saved("u1")
    assert len(saved) == 1
    assert saved[0]["id"] == job["id"]
    assert saved[0]["saved"][0]["user_id"] == "u1"
    assert saved[0]["company"]["name"] == "Acme"


# ---------- hiring status / delete / single ----------

@pytest.mark.asyncio
async def test_hiring_status_round_trip(repo, backend):
    job = await repo.create(VALID_JOB)

    assert await repo.update_hiring_status(job["id"], True) == {"id": job["id"], "isOpen": True}
    assert await repo.update_hiring_status(job["id"], False) == {"id": job["id"], "isOpen": False}
    assert backend.tables["jobs"][0]["isOpen"] is False


@pytest.mark.asyncio
@pytest.mark.parametrize("value", ["true", 1, None])
async def test_hiring_status_requires_boolean(repo, value):
    with pytest.raises(InvalidArgument) as excinfo:
        await repo.update_hiring_status(1, value)
    assert excinfo.value.fields == ["isOpen"]


@pytest.mark.asyncio
async def test_hiring_status_of_missing_job_is_not_found(repo):
    with pytest.raises(NotFound):
        await repo.update_hiring_status(42, False)


@pytest.mark.asyncio
async def test_hiring_status_restricted_to_owner(repo):
    job = await repo.create(VALID_JOB)
    with pytest.raises(NotFound):
        await repo.update_hiring_status(job["id"], False, recruiter_id="someone-else")


@pytest.mark.asyncio
async def test_delete_returns_id_or_none(repo, backend):
    job = await repo.create(VALID_JOB)

    assert await repo.delete(job["id"], recruiter_id="other") is None
    assert await repo.delete(job["id"]) == job["id"]
    assert await repo.delete(job["id"]) is None
    assert backend.tables["jobs"] == []


@pytest.mark.asyncio
async def test_get_single_embeds_company_and_applications(repo, backend):
    job = await repo.create(VALID_JOB)
    backend.seed("applications", job_id=job["id"], candidate_id="c1", resume="r")

    single = await repo.get_single(job["id"])
    assert single["company"]["name"] == "Acme"
    assert [a["candidate_id"] for a in single["applications"]] == ["c1"]

    with pytest.raises(NotFound):
        await repo.get_single(404)


@pytest.mark.asyncio
async def test_recruiter_jobs_are_filtered(repo):
    await repo.create(VALID_JOB)
    await repo.create({**VALID_JOB, "recruiter_id": "r2"})

    mine = await repo.list_for_recruiter("r2")
    assert [j["recruiter_id"] for j in mine] == ["r2"]
    assert mine[0]["company"] == {"name": "Acme", "logo_url": "https://backend.test/logo.png"}


# ---------- credential refresh / errors ----------

@pytest.mark.asyncio
async def test_expired_token_is_refreshed_once(repo, backend, tokens):
    backend.expired.add("token-1")

    jobs = await repo.list()

    assert jobs == []
    assert tokens.calls == [False, True]
    assert [c[2] for c in backend.calls] == ["token-1", "token-2"]


@pytest.mark.asyncio
async def test_persistent_expiry_surfaces(repo, backend):
    backend.expired.update({"token-1", "token-2"})
    with pytest.raises(CredentialExpired):
        await repo.list()


@pytest.mark.asyncio
async def test_backend_failure_is_normalized(repo, backend):
    backend.fail("GET", "/rest/v1/jobs", BackendError("relation does not exist", code="42P01", status_code=404))

    with pytest.raises(PersistenceError, match="Error fetching jobs: relation does not exist"):
        await repo.list()
