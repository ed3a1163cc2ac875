"""LineageWeaver - Genealogy and Worldbuilding Codex Backend.

FastAPI server over per-dataset document stores, with best-effort cloud
mirroring and JSON/GEDCOM import.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any

import settings

# Configure logging
logging.basicConfig(
    level=settings.get_log_level(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("lineageweaver")

from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

import codex_service
import data_integrity
import datasets
import dignity_service
import family_tree
import feature_flags
import genealogy
import heraldry_service
import migration_service
import preferences
import wiki_links
from bastard_naming import audit_bastard_names, generate_cadet_name_suggestions
from cloud import CloudSyncError, force_upload_to_cloud, get_sync_status
from database import DocumentStore, close_all_databases, get_database
from errors import ImportValidationError, NotFoundError
from gedcom_utils import export_family_gedcom, gedcom_to_family_template, parse_gedcom_content
from importers import (
    clear_codex,
    enhance_codex_entries,
    get_import_preview,
    import_codex_data,
    preview_enhancements,
    unified_import,
    validate_payload,
)
from schemas import (
    ActiveDatasetRequest,
    CeremonyRequest,
    CodexEntryCreate,
    CodexEntryUpdate,
    CodexLinkCreate,
    DatasetCreate,
    DatasetUpdate,
    DignityCreate,
    DignityLinkCreate,
    DignityUpdate,
    DuplicatePair,
    Enhancement,
    FeatureToggle,
    HeraldryCreate,
    HeraldryLinkCreate,
    HeraldryUpdate,
    HouseCreate,
    HouseUpdate,
    PersonalArmsRequest,
    PersonCreate,
    PersonUpdate,
    RelationshipCreate,
    RelationshipUpdate,
    TenureCreate,
    TenureUpdate,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - make sure the default dataset exists, close stores on exit."""
    datasets.ensure_default_dataset()
    logger.info(f"Data directory: {settings.get_data_dir()}")
    logger.info(f"Cloud sync: {'enabled' if get_sync_status()['enabled'] else 'disabled'}")

    yield

    close_all_databases()
    logger.info("Closed all dataset databases")


# Create FastAPI app
app = FastAPI(
    title="LineageWeaver",
    description="Genealogy and worldbuilding codex backend",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    logger.warning(f"{request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ImportValidationError)
async def import_validation_handler(request: Request, exc: ImportValidationError):
    logger.warning(f"Import rejected: {exc}")
    return JSONResponse(status_code=400, content={"detail": str(exc), "errors": exc.errors})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    logger.warning(f"{request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# Dependencies

def get_store(dataset_id: str | None = Query(default=None, alias="datasetId")) -> DocumentStore:
    """Store for the requested dataset, or the active one."""
    dataset_id = dataset_id or datasets.get_active_dataset_id()
    if dataset_id != datasets.DEFAULT_DATASET_ID and datasets.get_dataset(dataset_id) is None:
        raise HTTPException(status_code=404, detail=f"Dataset not found: {dataset_id}")
    return get_database(dataset_id)


def get_user_id(x_user_id: str | None = Header(default=None)) -> str | None:
    """Cloud user to mirror writes to; no header means local only."""
    return x_user_id


def require_confirm(confirm: bool) -> None:
    if not confirm:
        raise HTTPException(status_code=400, detail="Destructive operation requires confirm=true")


async def read_json_payload(request: Request) -> Any:
    body = await request.body()
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Malformed JSON upload: {e}")
        raise HTTPException(status_code=400, detail=f"Malformed JSON: {e}")


def _dump(model) -> dict[str, Any]:
    return model.model_dump(exclude_unset=True)


# Endpoints

@app.get("/health")
def health_check():
    """Health check endpoint."""
    logger.debug("Health check requested")
    return {
        "status": "healthy",
        "activeDataset": datasets.get_active_dataset_id(),
        "sync": get_sync_status(),
    }


# Houses

@app.get("/houses")
def list_houses(store: DocumentStore = Depends(get_store)):
    return {"houses": genealogy.get_all_houses(store)}


@app.post("/houses", status_code=201)
def create_house(
    house: HouseCreate,
    skip_codex: bool = Query(default=False, alias="skipCodex"),
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    house_id = genealogy.add_house(store, house.model_dump(), user_id=user_id, skip_codex_creation=skip_codex)
    return genealogy.get_house(store, house_id)


@app.get("/houses/{house_id}")
def get_house(house_id: int, store: DocumentStore = Depends(get_store)):
    return {
        "house": genealogy.require_house(store, house_id),
        "members": genealogy.get_people_by_house(store, house_id),
        "cadetHouses": genealogy.get_cadet_houses(store, house_id),
    }


@app.patch("/houses/{house_id}")
def update_house(
    house_id: int,
    updates: HouseUpdate,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    genealogy.require_house(store, house_id)
    genealogy.update_house(store, house_id, _dump(updates), user_id=user_id)
    return genealogy.get_house(store, house_id)


@app.delete("/houses/{house_id}")
def delete_house(
    house_id: int,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    genealogy.require_house(store, house_id)
    genealogy.delete_house(store, house_id, user_id=user_id)
    return {"deleted": house_id}


@app.get("/houses/{house_id}/cadet-name-suggestions")
def cadet_name_suggestions(
    house_id: int,
    bastard: bool = Query(default=False),
    store: DocumentStore = Depends(get_store),
):
    house = genealogy.require_house(store, house_id)
    return {"suggestions": generate_cadet_name_suggestions(house.get("houseName") or "", is_bastard_founder=bastard)}


# People

@app.get("/people")
def list_people(
    house_id: int | None = Query(default=None, alias="houseId"),
    store: DocumentStore = Depends(get_store),
):
    if house_id is not None:
        return {"people": genealogy.get_people_by_house(store, house_id)}
    return {"people": genealogy.get_all_people(store)}


@app.post("/people", status_code=201)
def create_person(
    person: PersonCreate,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    if person.houseId is not None:
        genealogy.require_house(store, person.houseId)
    person_id = genealogy.add_person(store, person.model_dump(), user_id=user_id)
    return genealogy.get_person(store, person_id)


@app.post("/people/duplicates")
def check_person_duplicates(
    person: PersonCreate,
    threshold: float = Query(default=0.60, ge=0.0, le=1.0),
    store: DocumentStore = Depends(get_store),
):
    """People already stored that a new record may duplicate."""
    matches = genealogy.find_duplicates_of(store, person.model_dump(), threshold=threshold)
    return {"matches": matches, "count": len(matches)}


@app.get("/people/{person_id}")
def get_person(person_id: int, store: DocumentStore = Depends(get_store)):
    person = genealogy.require_person(store, person_id)
    return {
        "person": person,
        "relationships": genealogy.get_relationships_for_person(store, person_id),
        "namedAfter": genealogy.get_named_after_relationships(store, person_id),
        "ceremony": genealogy.is_eligible_for_ceremony(person),
    }


@app.patch("/people/{person_id}")
def update_person(
    person_id: int,
    updates: PersonUpdate,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    genealogy.require_person(store, person_id)
    genealogy.update_person(store, person_id, _dump(updates), user_id=user_id)
    return genealogy.get_person(store, person_id)


@app.delete("/people/{person_id}")
def delete_person(
    person_id: int,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    genealogy.require_person(store, person_id)
    removed = genealogy.delete_person(store, person_id, user_id=user_id)
    return {"deleted": person_id, "relationshipsRemoved": removed}


# Relationships

@app.get("/relationships")
def list_relationships(store: DocumentStore = Depends(get_store)):
    return {"relationships": genealogy.get_all_relationships(store)}


@app.post("/relationships", status_code=201)
def create_relationship(
    relationship: RelationshipCreate,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    genealogy.require_person(store, relationship.person1Id)
    genealogy.require_person(store, relationship.person2Id)
    if relationship.relationshipType in ("parent", "parent-child", "adopted-parent", "foster-parent"):
        check = data_integrity.validate_parent_child_relationship(
            relationship.person1Id, relationship.person2Id, genealogy.get_all_relationships(store)
        )
        if not check["valid"]:
            raise HTTPException(status_code=400, detail=check["error"])
    rel_id = genealogy.add_relationship(store, relationship.model_dump(), user_id=user_id)
    return store.get("relationships", rel_id)


@app.patch("/relationships/{rel_id}")
def update_relationship(
    rel_id: int,
    updates: RelationshipUpdate,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    if not genealogy.update_relationship(store, rel_id, _dump(updates), user_id=user_id):
        raise NotFoundError("relationships", rel_id)
    return store.get("relationships", rel_id)


@app.delete("/relationships/{rel_id}")
def delete_relationship(
    rel_id: int,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    genealogy.delete_relationship(store, rel_id, user_id=user_id)
    return {"deleted": rel_id}


# Tree

@app.get("/tree/{person_id}")
def get_family_tree(
    person_id: int,
    ancestor_depth: int = Query(default=5, le=20, alias="ancestorDepth"),
    descendant_depth: int = Query(default=5, le=20, alias="descendantDepth"),
    store: DocumentStore = Depends(get_store),
):
    """Get the ancestor and descendant tree centred on a person."""
    logger.info(f"Building tree for person_id={person_id}")
    return {"tree": family_tree.build_bidirectional_tree(store, person_id, ancestor_depth, descendant_depth)}


@app.get("/tree")
def get_root_ancestors(store: DocumentStore = Depends(get_store)):
    """People with no recorded parents (good starting points)."""
    return {"roots": family_tree.find_root_ancestors(store)}


# Manage

@app.post("/manage/ceremony", status_code=201)
def cadet_ceremony(
    ceremony: CeremonyRequest,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    founder = genealogy.require_person(store, ceremony.founderId)
    eligibility = genealogy.is_eligible_for_ceremony(founder)
    if not eligibility["eligible"]:
        raise HTTPException(status_code=400, detail=eligibility["reason"])
    return genealogy.found_cadet_house(store, _dump(ceremony), user_id=user_id)


@app.delete("/manage/all")
def delete_all(confirm: bool = Query(default=False), store: DocumentStore = Depends(get_store)):
    require_confirm(confirm)
    genealogy.delete_all_data(store)
    return {"status": "deleted", "scope": "all"}


@app.delete("/manage/genealogy")
def delete_genealogy(confirm: bool = Query(default=False), store: DocumentStore = Depends(get_store)):
    require_confirm(confirm)
    genealogy.delete_genealogy_data(store)
    return {"status": "deleted", "scope": "genealogy"}


@app.get("/manage/acknowledged-duplicates")
def list_acknowledged_duplicates(store: DocumentStore = Depends(get_store)):
    return {"acknowledged": genealogy.get_all_acknowledged_duplicates(store)}


@app.post("/manage/acknowledged-duplicates", status_code=201)
def acknowledge_duplicate(pair: DuplicatePair, store: DocumentStore = Depends(get_store)):
    record_id = genealogy.acknowledge_duplicate(store, pair.person1Id, pair.person2Id)
    return {"id": record_id, "alreadyAcknowledged": record_id is None}


@app.delete("/manage/acknowledged-duplicates")
def remove_acknowledged_duplicate(
    person1_id: int = Query(alias="person1Id"),
    person2_id: int = Query(alias="person2Id"),
    store: DocumentStore = Depends(get_store),
):
    genealogy.remove_acknowledged_duplicate(store, person1_id, person2_id)
    return {"removed": [person1_id, person2_id]}


@app.post("/manage/sync")
def force_sync(store: DocumentStore = Depends(get_store), user_id: str | None = Depends(get_user_id)):
    """Upload the whole dataset to the cloud."""
    try:
        return force_upload_to_cloud(user_id, store)
    except CloudSyncError as e:
        raise HTTPException(status_code=502, detail=str(e))


# Codex

@app.get("/codex")
def list_codex(
    type: str | None = Query(default=None),
    category: str | None = Query(default=None),
    era: str | None = Query(default=None),
    tag: str | None = Query(default=None),
    q: str | None = Query(default=None),
    full_text: bool = Query(default=False, alias="fullText"),
    store: DocumentStore = Depends(get_store),
):
    """List entries, filtered by one criterion or searched by title/full text."""
    if q:
        search = codex_service.search_entries_full_text if full_text else codex_service.search_entries_by_title
        entries = search(store, q)
    elif type:
        entries = codex_service.get_entries_by_type(store, type)
    elif category:
        entries = codex_service.get_entries_by_category(store, category)
    elif era:
        entries = codex_service.get_entries_by_era(store, era)
    elif tag:
        entries = codex_service.get_entries_by_tag(store, tag)
    else:
        entries = codex_service.get_all_entries(store)
    return {"entries": entries}


@app.get("/codex/statistics")
def codex_statistics(store: DocumentStore = Depends(get_store)):
    return codex_service.get_codex_statistics(store)


@app.get("/codex/suggest")
def codex_suggest(q: str, limit: int = Query(default=10, le=50), store: DocumentStore = Depends(get_store)):
    return {"suggestions": wiki_links.get_suggested_entries(store, q, limit)}


@app.post("/codex", status_code=201)
def create_codex_entry(
    entry: CodexEntryCreate,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    entry_id = codex_service.create_entry(store, entry.model_dump(), user_id=user_id)
    links = wiki_links.sync_entry_links(store, entry_id, user_id=user_id)
    return {"entry": codex_service.get_entry(store, entry_id), "links": links}


@app.get("/codex/{entry_id}")
def get_codex_entry(entry_id: int, store: DocumentStore = Depends(get_store)):
    entry = codex_service.require_entry(store, entry_id)
    return {
        "entry": entry,
        "unresolvedLinks": wiki_links.validate_wiki_links(store, entry.get("content")),
    }


@app.patch("/codex/{entry_id}")
def update_codex_entry(
    entry_id: int,
    updates: CodexEntryUpdate,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    codex_service.require_entry(store, entry_id)
    changes = _dump(updates)
    codex_service.update_entry(store, entry_id, changes, user_id=user_id)
    links = wiki_links.sync_entry_links(store, entry_id, user_id=user_id) if "content" in changes else None
    return {"entry": codex_service.get_entry(store, entry_id), "links": links}


@app.delete("/codex/{entry_id}")
def delete_codex_entry(
    entry_id: int,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    codex_service.require_entry(store, entry_id)
    codex_service.delete_entry(store, entry_id, user_id=user_id)
    return {"deleted": entry_id}


@app.get("/codex/{entry_id}/links")
def get_codex_links(entry_id: int, store: DocumentStore = Depends(get_store)):
    """Outgoing links and backlinks, each backlink with a context snippet."""
    entry = codex_service.require_entry(store, entry_id)
    links = codex_service.get_all_links_for_entry(store, entry_id)
    backlinks = []
    for link in links["incoming"]:
        source = codex_service.get_entry(store, link.get("sourceId"))
        if source:
            backlinks.append({
                **link,
                "sourceTitle": source.get("title"),
                "snippet": wiki_links.get_context_snippet(source.get("content"), entry.get("title")),
            })
    return {"outgoing": links["outgoing"], "incoming": backlinks}


@app.post("/codex/{entry_id}/links", status_code=201)
def create_codex_link(
    entry_id: int,
    link: CodexLinkCreate,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    codex_service.require_entry(store, entry_id)
    codex_service.require_entry(store, link.targetId)
    link_id = codex_service.create_link(store, {"sourceId": entry_id, **link.model_dump()}, user_id=user_id)
    return store.get("codexLinks", link_id)


@app.delete("/codex/links/{link_id}")
def delete_codex_link(
    link_id: int,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    codex_service.delete_link(store, link_id, user_id=user_id)
    return {"deleted": link_id}


@app.post("/codex/import")
async def codex_import(
    request: Request,
    skip_duplicates: bool = Query(default=True, alias="skipDuplicates"),
    validate_only: bool = Query(default=False, alias="validateOnly"),
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    """Import a category-keyed codex payload."""
    payload = await read_json_payload(request)
    logger.info(f"Codex import requested for dataset {store.dataset_id}")
    return await run_in_threadpool(
        import_codex_data,
        store,
        payload,
        skip_duplicates=skip_duplicates,
        validate_only=validate_only,
        user_id=user_id,
    )


@app.post("/codex/import/preview")
async def codex_import_preview(request: Request):
    payload = await read_json_payload(request)
    return get_import_preview(payload)


@app.post("/codex/enhance")
def codex_enhance(
    enhancements: list[Enhancement],
    dry_run: bool = Query(default=False, alias="dryRun"),
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    items = [e.model_dump() for e in enhancements]
    if dry_run:
        return preview_enhancements(store, items)
    return enhance_codex_entries(store, items, user_id=user_id)


@app.delete("/codex")
def clear_codex_entries(confirm: bool = Query(default=False), store: DocumentStore = Depends(get_store)):
    require_confirm(confirm)
    clear_codex(store, confirm=True)
    return {"status": "cleared"}


# Unified import and GEDCOM

@app.post("/import")
async def import_payload(
    request: Request,
    skip_duplicates: bool = Query(default=True, alias="skipDuplicates"),
    dry_run: bool = Query(default=False, alias="dryRun"),
    skip_codex: bool = Query(default=False, alias="skipCodex"),
    skip_enhancements: bool = Query(default=False, alias="skipEnhancements"),
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    """Import family data, codex entries and enhancements from one payload."""
    payload = await read_json_payload(request)
    result = await run_in_threadpool(
        unified_import,
        payload,
        store=store,
        user_id=user_id,
        skip_duplicates=skip_duplicates,
        dry_run=dry_run,
        skip_codex=skip_codex,
        skip_enhancements=skip_enhancements,
    )
    if not result["success"] and not any(result["summary"].values()):
        return JSONResponse(status_code=400, content=result)
    return result


@app.post("/import/validate")
async def import_validate(request: Request, store: DocumentStore = Depends(get_store)):
    payload = await read_json_payload(request)
    return await run_in_threadpool(validate_payload, payload, store)


@app.post("/import/gedcom")
def import_gedcom(
    file: UploadFile = File(...),
    dry_run: bool = Query(default=False, alias="dryRun"),
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    """Upload a GEDCOM file and import it as houses, people and relationships."""
    logger.info(f"Received GEDCOM file upload: {file.filename}")

    if not file.filename or not file.filename.endswith((".ged", ".gedcom")):
        logger.warning(f"Invalid file type: {file.filename}")
        raise HTTPException(status_code=400, detail="File must be a GEDCOM file (.ged or .gedcom)")

    content = file.file.read()
    try:
        content_str = content.decode("utf-8")
    except UnicodeDecodeError:
        logger.info("UTF-8 decode failed, trying latin-1 encoding")
        content_str = content.decode("latin-1")

    try:
        template = gedcom_to_family_template(parse_gedcom_content(content_str))
    except Exception as e:
        logger.error(f"Failed to parse GEDCOM file: {e}")
        raise HTTPException(status_code=400, detail=f"Failed to parse GEDCOM file: {e}")

    logger.info(f"Parsed GEDCOM: {len(template['houses'])} houses, {len(template['people'])} people")
    return unified_import(template, store=store, user_id=user_id, dry_run=dry_run)


@app.get("/export/gedcom", response_class=PlainTextResponse)
def export_gedcom(store: DocumentStore = Depends(get_store)):
    return export_family_gedcom(
        genealogy.get_all_houses(store),
        genealogy.get_all_people(store),
        genealogy.get_all_relationships(store),
    )


# Dignities

@app.get("/dignities")
def list_dignities(
    dignity_class: str | None = Query(default=None, alias="class"),
    rank: str | None = Query(default=None),
    nature: str | None = Query(default=None),
    q: str | None = Query(default=None),
    store: DocumentStore = Depends(get_store),
):
    if q:
        dignities = dignity_service.search_dignities(store, q)
    elif dignity_class:
        dignities = dignity_service.get_dignities_by_class(store, dignity_class)
    elif rank:
        dignities = dignity_service.get_dignities_by_rank(store, rank)
    elif nature:
        dignities = dignity_service.get_dignities_by_nature(store, nature)
    else:
        dignities = dignity_service.get_all_dignities(store)
    return {"dignities": dignities}


@app.get("/dignities/reference")
def dignity_reference():
    return dignity_service.get_reference_data()


@app.get("/dignities/statistics")
def dignity_statistics(store: DocumentStore = Depends(get_store)):
    return dignity_service.get_dignity_statistics(store)


@app.post("/dignities", status_code=201)
def create_dignity(
    dignity: DignityCreate,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    dignity_id = dignity_service.create_dignity(store, dignity.model_dump(), user_id=user_id)
    return dignity_service.get_dignity(store, dignity_id)


@app.get("/dignities/{dignity_id}")
def get_dignity(dignity_id: int, store: DocumentStore = Depends(get_store)):
    dignity = dignity_service.require_dignity(store, dignity_id)
    holder = genealogy.get_person(store, dignity.get("currentHolderId")) if dignity.get("currentHolderId") else None
    holder_name = f"{holder.get('firstName')} {holder.get('lastName')}" if holder else None
    return {
        "dignity": dignity,
        "displayTitle": dignity_service.format_dignity_title(dignity, holder_name),
        "rankInfo": dignity_service.get_rank_info(dignity.get("dignityClass"), dignity.get("dignityRank")),
        "tenures": dignity_service.get_tenures_for_dignity(store, dignity_id),
        "currentTenure": dignity_service.get_current_tenure(store, dignity_id),
        "links": dignity_service.get_dignity_links(store, dignity_id),
        "subordinates": dignity_service.get_subordinate_dignities(store, dignity_id),
        "feudalChain": dignity_service.get_feudal_chain(store, dignity_id),
    }


@app.patch("/dignities/{dignity_id}")
def update_dignity(
    dignity_id: int,
    updates: DignityUpdate,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    dignity_service.require_dignity(store, dignity_id)
    dignity_service.update_dignity(store, dignity_id, _dump(updates), user_id=user_id)
    return dignity_service.get_dignity(store, dignity_id)


@app.delete("/dignities/{dignity_id}")
def delete_dignity(
    dignity_id: int,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    dignity_service.require_dignity(store, dignity_id)
    dignity_service.delete_dignity(store, dignity_id, user_id=user_id)
    return {"deleted": dignity_id}


@app.post("/dignities/{dignity_id}/tenures", status_code=201)
def create_tenure(
    dignity_id: int,
    tenure: TenureCreate,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    dignity_service.require_dignity(store, dignity_id)
    genealogy.require_person(store, tenure.personId)
    tenure_id = dignity_service.create_dignity_tenure(
        store, {**tenure.model_dump(), "dignityId": dignity_id}, user_id=user_id
    )
    return store.get("dignityTenures", tenure_id)


@app.patch("/dignities/tenures/{tenure_id}")
def update_tenure(
    tenure_id: int,
    updates: TenureUpdate,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    if not dignity_service.update_dignity_tenure(store, tenure_id, _dump(updates), user_id=user_id):
        raise NotFoundError("dignityTenures", tenure_id)
    return store.get("dignityTenures", tenure_id)


@app.delete("/dignities/tenures/{tenure_id}")
def delete_tenure(
    tenure_id: int,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    dignity_service.delete_dignity_tenure(store, tenure_id, user_id=user_id)
    return {"deleted": tenure_id}


@app.post("/dignities/{dignity_id}/links", status_code=201)
def link_dignity(
    dignity_id: int,
    link: DignityLinkCreate,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    dignity_service.require_dignity(store, dignity_id)
    link_id = dignity_service.link_dignity_to_entity(store, {**link.model_dump(), "dignityId": dignity_id}, user_id=user_id)
    return store.get("dignityLinks", link_id)


@app.delete("/dignities/links/{link_id}")
def unlink_dignity(
    link_id: int,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    dignity_service.unlink_dignity(store, link_id, user_id=user_id)
    return {"deleted": link_id}


@app.get("/people/{person_id}/dignities")
def person_dignities(person_id: int, store: DocumentStore = Depends(get_store)):
    genealogy.require_person(store, person_id)
    return {
        "held": dignity_service.get_dignities_for_person(store, person_id),
        "tenures": dignity_service.get_tenures_for_person(store, person_id),
    }


@app.get("/houses/{house_id}/dignities")
def house_dignities(house_id: int, store: DocumentStore = Depends(get_store)):
    genealogy.require_house(store, house_id)
    return {
        "held": dignity_service.get_dignities_for_house(store, house_id),
        "linked": dignity_service.get_dignities_for_entity(store, "house", house_id),
    }


# Heraldry

@app.get("/heraldry")
def list_heraldry(
    category: str | None = Query(default=None),
    q: str | None = Query(default=None),
    templates: bool = Query(default=False),
    store: DocumentStore = Depends(get_store),
):
    if q:
        records = heraldry_service.search_heraldry(store, q)
    elif category:
        records = heraldry_service.get_heraldry_by_category(store, category)
    elif templates:
        records = heraldry_service.get_heraldry_templates(store)
    else:
        records = heraldry_service.get_all_heraldry(store)
    return {"heraldry": records}


@app.get("/heraldry/statistics")
def heraldry_statistics(store: DocumentStore = Depends(get_store)):
    return heraldry_service.get_heraldry_statistics(store)


@app.post("/heraldry", status_code=201)
def create_heraldry(
    heraldry: HeraldryCreate,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    heraldry_id = heraldry_service.create_heraldry(store, heraldry.model_dump(), user_id=user_id)
    return heraldry_service.get_heraldry(store, heraldry_id)


@app.get("/heraldry/{heraldry_id}")
def get_heraldry(heraldry_id: int, store: DocumentStore = Depends(get_store)):
    return {
        "heraldry": heraldry_service.require_heraldry(store, heraldry_id),
        "links": heraldry_service.get_heraldry_links(store, heraldry_id),
    }


@app.patch("/heraldry/{heraldry_id}")
def update_heraldry(
    heraldry_id: int,
    updates: HeraldryUpdate,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    heraldry_service.require_heraldry(store, heraldry_id)
    heraldry_service.update_heraldry(store, heraldry_id, _dump(updates), user_id=user_id)
    return heraldry_service.get_heraldry(store, heraldry_id)


@app.delete("/heraldry/{heraldry_id}")
def delete_heraldry(
    heraldry_id: int,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    heraldry_service.require_heraldry(store, heraldry_id)
    heraldry_service.delete_heraldry(store, heraldry_id, user_id=user_id)
    return {"deleted": heraldry_id}


@app.post("/heraldry/{heraldry_id}/links", status_code=201)
def link_heraldry(
    heraldry_id: int,
    link: HeraldryLinkCreate,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    heraldry_service.require_heraldry(store, heraldry_id)
    link_id = heraldry_service.link_heraldry_to_entity(
        store, {**link.model_dump(), "heraldryId": heraldry_id}, user_id=user_id
    )
    return store.get("heraldryLinks", link_id)


@app.delete("/heraldry/links/{link_id}")
def unlink_heraldry(
    link_id: int,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    heraldry_service.unlink_heraldry(store, link_id, user_id=user_id)
    return {"deleted": link_id}


@app.get("/people/{person_id}/arms")
def personal_arms(person_id: int, store: DocumentStore = Depends(get_store)):
    genealogy.require_person(store, person_id)
    return {"arms": heraldry_service.get_personal_arms(store, person_id)}


@app.post("/people/{person_id}/arms", status_code=201)
def create_personal_arms(
    person_id: int,
    request_data: PersonalArmsRequest,
    store: DocumentStore = Depends(get_store),
    user_id: str | None = Depends(get_user_id),
):
    heraldry_id = heraldry_service.create_personal_arms_from_house(
        store,
        person_id,
        request_data.houseHeraldryId,
        request_data.birthPosition,
        name=request_data.name,
        user_id=user_id,
    )
    return heraldry_service.get_heraldry(store, heraldry_id)


# Audits

@app.get("/audit/bastard-names")
def audit_bastard_surnames(store: DocumentStore = Depends(get_store)):
    issues = audit_bastard_names(
        genealogy.get_all_people(store),
        genealogy.get_all_houses(store),
        genealogy.get_all_relationships(store),
    )
    logger.info(f"Bastard name audit: {len(issues)} issues")
    return {"issues": issues, "count": len(issues)}


@app.get("/audit/integrity")
def audit_integrity(store: DocumentStore = Depends(get_store)):
    return data_integrity.check_dataset_integrity(store)


@app.get("/audit/duplicates")
def audit_duplicates(
    threshold: float = Query(default=0.80, ge=0.0, le=1.0),
    store: DocumentStore = Depends(get_store),
):
    duplicates = genealogy.find_potential_duplicate_people(store, threshold)
    return {"duplicates": duplicates, "count": len(duplicates)}


# Migrations

@app.get("/migrations")
def migration_status(store: DocumentStore = Depends(get_store)):
    return migration_service.get_migration_status(store)


@app.post("/migrations")
def run_migrations(store: DocumentStore = Depends(get_store), user_id: str | None = Depends(get_user_id)):
    return migration_service.run_all_migrations(store, user_id=user_id)


# Datasets

@app.get("/datasets")
def list_datasets():
    return {"datasets": datasets.get_all_datasets(), "activeDatasetId": datasets.get_active_dataset_id()}


@app.post("/datasets", status_code=201)
def create_dataset(dataset: DatasetCreate):
    return datasets.create_dataset(_dump(dataset))


@app.put("/datasets/active")
def set_active_dataset(request_data: ActiveDatasetRequest):
    datasets.set_active_dataset_id(request_data.datasetId)
    return {"activeDatasetId": request_data.datasetId}


@app.get("/datasets/{dataset_id}")
def get_dataset(dataset_id: str):
    dataset = datasets.get_dataset(dataset_id)
    if dataset is None:
        raise NotFoundError("datasets", dataset_id)
    return dataset


@app.patch("/datasets/{dataset_id}")
def update_dataset(dataset_id: str, updates: DatasetUpdate):
    return datasets.update_dataset(dataset_id, _dump(updates))


@app.delete("/datasets/{dataset_id}")
def delete_dataset(dataset_id: str, confirm: bool = Query(default=False)):
    require_confirm(confirm)
    datasets.delete_dataset(dataset_id)
    return {"deleted": dataset_id}


# Preferences and features

@app.get("/preferences")
def get_preferences():
    return preferences.load_preferences()


@app.patch("/preferences")
async def update_preferences(request: Request):
    updates = await read_json_payload(request)
    if not isinstance(updates, dict):
        raise HTTPException(status_code=400, detail="Preferences must be a JSON object")
    return preferences.update_preferences(updates)


@app.get("/features")
def get_features():
    status = feature_flags.get_feature_status()
    status["devPanel"] = bool(preferences.get_preference(preferences.SHOW_DEV_PANEL_KEY, False))
    return status


@app.get("/features/{feature_path}")
def get_feature(feature_path: str):
    return {"feature": feature_path, "enabled": feature_flags.is_feature_enabled(feature_path)}


@app.post("/features/toggle")
def toggle_feature(toggle: FeatureToggle):
    """Runtime toggle, allowed only while the dev panel preference is on."""
    if not preferences.get_preference(preferences.SHOW_DEV_PANEL_KEY, False):
        raise HTTPException(status_code=403, detail="Feature toggles require the dev panel to be enabled")
    feature_flags.toggle_feature(toggle.path, toggle.enabled)
    return {"feature": toggle.path, "enabled": feature_flags.is_feature_enabled(toggle.path)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
