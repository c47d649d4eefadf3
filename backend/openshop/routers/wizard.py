"""Store-onboarding wizard.

Endpoints:
  POST   /api/wizard/start?store_id=   → open a session (edit mode when store_id is set)
  GET    /api/wizard/                  → current progress
  GET    /api/wizard/draft             → resumable draft, if any
  POST   /api/wizard/draft/recover     → load the draft into the session
  DELETE /api/wizard/draft             → discard the draft
  PATCH  /api/wizard/{section}         → basics | location | hours | branding | partnerships | terms
  POST   /api/wizard/branding/upload   → upload an image/video, record its URL
  POST   /api/wizard/continue          → validate + persist current step, advance
  POST   /api/wizard/back              → previous step
  POST   /api/wizard/jump/{index}      → revisit a completed step
  POST   /api/wizard/submit            → submit the store for review
  POST   /api/wizard/partners/search   → refresh partner candidates
  GET    /api/wizard/category-flows    → category setup questions
  POST   /api/wizard/exit              → stop auto-save and close the session

Sessions are keyed by the JWT subject plus the X-Device-Id header.
"""

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from openshop.auth.deps import (
    CurrentUser,
    get_controller,
    get_current_user,
    get_device_id,
    get_sessions,
)
from openshop.schemas.catalog import CategoryFlowConfig
from openshop.schemas.wizard import (
    BasicsUpdate,
    BrandingAsset,
    BrandingUpdate,
    DraftSummary,
    ExitRequest,
    HoursUpdate,
    LocationUpdate,
    PartnershipsUpdate,
    PartnerSearchRequest,
    SessionStart,
    SubmitRequest,
    TermsUpdate,
    WizardProgress,
)
from openshop.services.controller import WizardController
from openshop.services.sessions import SessionRegistry

router = APIRouter()


# ── Session ─────────────────────────────────────────────────

@router.post("/start", response_model=SessionStart)
async def start_wizard(
    store_id: int | None = Query(default=None),
    user: CurrentUser = Depends(get_current_user),
    device_id: str = Depends(get_device_id),
    sessions: SessionRegistry = Depends(get_sessions),
):
    controller = await sessions.open(user.user_id, device_id, user.token)
    progress = await controller.start(store_id)
    draft = await controller.pending_draft()
    return SessionStart(progress=progress, draft=draft)


@router.get("/", response_model=WizardProgress)
async def get_progress(controller: WizardController = Depends(get_controller)):
    return controller.progress()


@router.post("/exit", response_model=WizardProgress)
async def exit_wizard(
    body: ExitRequest | None = None,
    user: CurrentUser = Depends(get_current_user),
    device_id: str = Depends(get_device_id),
    controller: WizardController = Depends(get_controller),
    sessions: SessionRegistry = Depends(get_sessions),
):
    save_draft = body.save_draft if body else True
    progress = await controller.exit(save_draft=save_draft)
    await sessions.close(user.user_id, device_id)
    return progress


# ── Drafts ──────────────────────────────────────────────────

@router.get("/draft", response_model=DraftSummary | None)
async def get_draft(controller: WizardController = Depends(get_controller)):
    return await controller.pending_draft()


@router.post("/draft/recover", response_model=WizardProgress)
async def recover_draft(controller: WizardController = Depends(get_controller)):
    return await controller.recover_draft()


@router.delete("/draft")
async def discard_draft(controller: WizardController = Depends(get_controller)):
    discarded = await controller.discard_draft()
    return {"discarded": discarded}


# ── Step data ───────────────────────────────────────────────

@router.patch("/basics", response_model=WizardProgress)
async def update_basics(
    body: BasicsUpdate,
    controller: WizardController = Depends(get_controller),
):
    return controller.update_basics(body)


@router.patch("/location", response_model=WizardProgress)
async def update_location(
    body: LocationUpdate,
    controller: WizardController = Depends(get_controller),
):
    return controller.update_location(body)


@router.patch("/hours", response_model=WizardProgress)
async def update_hours(
    body: HoursUpdate,
    controller: WizardController = Depends(get_controller),
):
    return controller.update_hours(body)


@router.patch("/branding", response_model=WizardProgress)
async def update_branding(
    body: BrandingUpdate,
    controller: WizardController = Depends(get_controller),
):
    return controller.set_branding_asset(body.asset, body.url)


@router.post("/branding/upload", response_model=WizardProgress)
async def upload_branding(
    asset: BrandingAsset = Form(...),
    file: UploadFile = File(...),
    controller: WizardController = Depends(get_controller),
):
    content = await file.read()
    return await controller.upload_branding(
        asset,
        file.filename or asset,
        content,
        file.content_type or "application/octet-stream",
    )


@router.patch("/partnerships", response_model=WizardProgress)
async def update_partnerships(
    body: PartnershipsUpdate,
    controller: WizardController = Depends(get_controller),
):
    return controller.update_partnerships(body)


@router.patch("/terms", response_model=WizardProgress)
async def update_terms(
    body: TermsUpdate,
    controller: WizardController = Depends(get_controller),
):
    return controller.set_terms(body.agreed_to_terms)


# ── Navigation ──────────────────────────────────────────────

@router.post("/continue", response_model=WizardProgress)
async def continue_step(controller: WizardController = Depends(get_controller)):
    return await controller.advance()


@router.post("/back", response_model=WizardProgress)
async def back_step(controller: WizardController = Depends(get_controller)):
    return controller.retreat()


@router.post("/jump/{index}", response_model=WizardProgress)
async def jump_to_step(
    index: int,
    controller: WizardController = Depends(get_controller),
):
    return controller.jump_to(index)


@router.post("/submit", response_model=WizardProgress)
async def submit_store(
    body: SubmitRequest | None = None,
    controller: WizardController = Depends(get_controller),
):
    return await controller.submit(notes=body.submission_notes if body else "")


# ── Lookups ─────────────────────────────────────────────────

@router.post("/partners/search", response_model=WizardProgress)
async def search_partners(
    body: PartnerSearchRequest | None = None,
    controller: WizardController = Depends(get_controller),
):
    return await controller.search_partners(body.radius_miles if body else None)


@router.get("/category-flows", response_model=dict[str, CategoryFlowConfig])
async def category_flows(controller: WizardController = Depends(get_controller)):
    await controller.catalog.load()
    return controller.catalog.flows()
