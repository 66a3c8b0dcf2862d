from __future__ import annotations

import pytest

from apprentice_builder.errors import BuilderValidationError, ExternalServiceError, InvalidTransitionError
from apprentice_builder.schemas import Classification, LessonType, Resource
from apprentice_builder.session import CourseBuilderSession, SessionRegistry, SessionState, TemplateBuilderSession


@pytest.mark.asyncio
async def test_end_to_end_standard_seven(course_session) -> None:
    assert course_session.state == SessionState.IDLE

    await course_session.select_standard(7)
    assert course_session.state == SessionState.STANDARD_SELECTED
    course_session.synthesize_structure()
    assert course_session.state == SessionState.TREE_POPULATED

    behaviors = next(m for m in course_session.modules if m.title == "Professional Behaviors")
    assert course_session.delete_module(behaviors.id)
    skills = next(m for m in course_session.modules if m.title == "Practical Skills Development")
    course_session.add_lesson(skills.id, LessonType.CONTENT)

    assert [m.title for m in course_session.modules] == [
        "Foundations and Core Knowledge",
        "Practical Skills Development",
        "Assessment Preparation",
    ]
    assert len(skills.lessons) == 2
    behavior_ids = {i.id for i in course_session.catalog_items if i.classification == Classification.BEHAVIOR}
    assert course_session.linker.referenced_ids().isdisjoint(behavior_ids)
    assert course_session.state == SessionState.EDITING


@pytest.mark.asyncio
async def test_select_standard_failure_rolls_back(course_session, catalog) -> None:
    await course_session.select_standard(7)
    catalog.fail = True

    with pytest.raises(ExternalServiceError):
        await course_session.select_standard(9)

    assert course_session.details.standard_id == 7
    assert len(course_session.catalog_items) == 12
    assert course_session.state == SessionState.STANDARD_SELECTED
    assert course_session.busy is False
    assert course_session.last_error == "Failed to fetch KSBs for the selected standard"


@pytest.mark.asyncio
async def test_changing_standard_keeps_existing_links(course_session) -> None:
    await course_session.select_standard(7)
    module = course_session.add_module()
    course_session.toggle_ksb(module.id, 11)

    await course_session.select_standard(9)

    assert course_session.state == SessionState.EDITING
    assert course_session.linker.references(module.id) == frozenset({11})
    assert course_session.linker.stale_references(module.id) == frozenset({11})


def test_synthesize_requires_a_standard(course_session) -> None:
    with pytest.raises(InvalidTransitionError):
        course_session.synthesize_structure()


def test_load_standard_analysis_synthesizes_from_given_items(course_session, standard7_items) -> None:
    modules = course_session.load_standard_analysis(standard7_items)
    assert course_session.details.standard_id == 7
    assert len(modules) == 4
    assert course_session.state == SessionState.TREE_POPULATED


@pytest.mark.asyncio
async def test_generate_structure_requires_standard(course_session, generator) -> None:
    with pytest.raises(BuilderValidationError) as info:
        await course_session.generate_structure()
    assert info.value.messages == ["Please select an apprenticeship standard first"]
    assert generator.calls == []


@pytest.mark.asyncio
async def test_generate_structure_replaces_tree(course_session, generator) -> None:
    await course_session.select_standard(7)
    course_session.add_module()

    await course_session.generate_structure(include_resources=False)

    assert [m.id for m in course_session.modules] == ["gen_m1"]
    assert generator.calls == [{"standard_id": 7, "include_resources": False, "include_assessments": True}]
    assert course_session.state == SessionState.TREE_POPULATED


@pytest.mark.asyncio
async def test_generate_failure_leaves_tree_untouched(course_session, generator) -> None:
    await course_session.select_standard(7)
    course_session.synthesize_structure()
    before = course_session.tree.to_payload()
    generator.fail = True

    with pytest.raises(ExternalServiceError):
        await course_session.generate_structure()

    assert course_session.tree.to_payload() == before
    assert course_session.state == SessionState.TREE_POPULATED
    assert course_session.busy is False
    assert course_session.last_error == "Failed to generate course structure with AI"


def test_editing_operations_move_to_editing(course_session) -> None:
    module = course_session.add_module()
    lesson = course_session.add_lesson(module.id, LessonType.RESOURCE)
    course_session.update_module(module.id, title="Data foundations")
    course_session.update_lesson(module.id, lesson.id, description="Read this")
    course_session.attach_resource(module.id, lesson.id, Resource(title="Guide", url="https://example.org/guide", ksb_ids=[1, 2]))

    assert course_session.state == SessionState.EDITING
    assert module.title == "Data foundations"
    assert (lesson.title, lesson.content, lesson.ksb_ids) == ("Guide", "https://example.org/guide", [1, 2])
    assert course_session.add_lesson("missing") is None


def test_update_details_cannot_change_standard(course_session) -> None:
    course_session.update_details(title="Course", standard_id=99, is_public=True)
    assert course_session.details.title == "Course"
    assert course_session.details.is_public is True
    assert course_session.details.standard_id is None


def test_reorder_and_select(course_session) -> None:
    a, b = course_session.add_module(), course_session.add_module()
    assert course_session.reorder_modules(1, 0)
    assert [m.id for m in course_session.modules] == [b.id, a.id]
    assert course_session.select_module(a.id) is a
    assert course_session.tree.selected_parent_id == a.id
    assert course_session.select_module("missing") is None


def test_validate_lists_every_problem(course_session) -> None:
    assert course_session.validate() == [
        "Title is required",
        "Description is required",
        "Standard is required",
        "Please add at least one module to your course",
    ]


@pytest.mark.asyncio
async def test_submit_invalid_never_reaches_store(course_session, store) -> None:
    with pytest.raises(BuilderValidationError):
        await course_session.submit()
    assert store.created == []


async def _ready(session: CourseBuilderSession) -> None:
    await session.select_standard(7)
    session.synthesize_structure()
    session.update_details(title="Data <Analyst>", description="Level 4")


@pytest.mark.asyncio
async def test_submit_creates_then_updates_and_clears_draft(course_session, store, drafts) -> None:
    await _ready(course_session)
    course_session.save_draft()

    template_id = await course_session.submit()

    assert template_id == "1"
    assert course_session.state == SessionState.SAVED
    assert drafts.load("owner-1") is None
    payload = store.created[0]
    assert payload["title"] == "Data Analyst"
    assert payload["standardId"] == 7
    assert len(payload["modules"]) == 4

    course_session.update_details(description="Level 4, revised")
    assert await course_session.submit() == "1"
    assert store.updated[0][0] == "1"


@pytest.mark.asyncio
async def test_submit_failure_keeps_state(course_session, store, drafts) -> None:
    await _ready(course_session)
    course_session.save_draft()
    store.fail = True

    with pytest.raises(ExternalServiceError):
        await course_session.submit()

    assert course_session.state == SessionState.EDITING
    assert drafts.load("owner-1") is not None
    assert course_session.template_id is None


@pytest.mark.asyncio
async def test_autosave_after_submit_does_not_bring_the_draft_back(course_session, drafts) -> None:
    await _ready(course_session)
    course_session.save_draft()
    await course_session.submit()

    assert course_session.autosave() is False
    assert drafts.load("owner-1") is None

    course_session.update_details(description="Level 4, revised")
    assert course_session.state == SessionState.EDITING
    assert course_session.autosave() is True
    assert drafts.load("owner-1").state["formValues"]["description"] == "Level 4, revised"


@pytest.mark.asyncio
async def test_submit_clears_only_the_course_draft(course_session, drafts) -> None:
    review = TemplateBuilderSession("owner-1", kind="review", drafts=drafts)
    review.update_details(title="Quarterly review")
    review.save_draft()
    await _ready(course_session)
    course_session.save_draft()

    await course_session.submit()

    assert drafts.load("owner-1") is None
    assert review.pending_draft().state["formValues"]["title"] == "Quarterly review"


@pytest.mark.asyncio
async def test_load_template_into_builder(course_session, store) -> None:
    await _ready(course_session)
    template_id = await course_session.submit()

    fresh = CourseBuilderSession(
        "owner-2",
        catalog=course_session.catalog,
        store=store,
        drafts=course_session.drafts,
    )
    await fresh.load_template(template_id)

    assert fresh.state == SessionState.EDITING
    assert fresh.template_id == template_id
    assert fresh.details.standard_id == 7
    assert len(fresh.catalog_items) == 12
    assert [m.title for m in fresh.modules] == [m.title for m in course_session.modules]


@pytest.mark.asyncio
async def test_load_unknown_template_changes_nothing(course_session) -> None:
    with pytest.raises(ExternalServiceError):
        await course_session.load_template("404")
    assert course_session.state == SessionState.IDLE
    assert course_session.template_id is None


@pytest.mark.asyncio
async def test_draft_recovery_restores_everything(course_session, catalog, store, drafts, ids) -> None:
    await _ready(course_session)
    course_session.select_module(course_session.modules[1].id)
    assert course_session.save_draft() == "2023-05-16T14:30:00"

    reopened = CourseBuilderSession("owner-1", catalog=catalog, store=store, drafts=drafts, ids=ids)
    pending = reopened.pending_draft()
    assert pending is not None

    assert reopened.recover_draft() is not None
    assert reopened.state == SessionState.EDITING
    assert reopened.details == course_session.details
    assert reopened.tree.to_payload() == course_session.tree.to_payload()
    assert reopened.tree.selected_parent_id == course_session.modules[1].id
    assert len(reopened.catalog_items) == 12
    assert reopened.draft_saved_at == "2023-05-16T14:30:00"


def test_discard_draft_resets(course_session, drafts) -> None:
    course_session.update_details(title="Draft")
    course_session.save_draft()

    course_session.discard_draft()

    assert drafts.load("owner-1") is None
    assert course_session.state == SessionState.IDLE
    assert course_session.details.title == ""
    assert course_session.modules == []


def test_draft_of_other_kind_is_not_offered(course_session, drafts) -> None:
    drafts.save("owner-1", {"formValues": {"title": "Review"}}, kind="review")
    assert course_session.pending_draft() is None
    assert course_session.recover_draft() is None


def test_malformed_draft_is_ignored(course_session, drafts) -> None:
    drafts.save("owner-1", {"courseModules": [{"title": "no id"}]})
    assert course_session.recover_draft() is None
    assert course_session.state == SessionState.IDLE


def test_autosave_needs_content_and_enabled_flag(course_session, drafts) -> None:
    assert course_session.autosave() is False
    assert drafts.load("owner-1") is None

    course_session.add_module()
    assert course_session.autosave() is True
    assert drafts.load("owner-1").state["courseModules"][0]["title"] == "New Module"

    drafts.clear("owner-1")
    course_session.set_autosave(False)
    assert course_session.autosave() is False
    assert drafts.load("owner-1") is None


def test_view_reports_counts_and_draft(course_session, standard7_items) -> None:
    course_session.load_standard_analysis(standard7_items)
    course_session.save_draft()
    view = course_session.view()
    assert view["state"] == "tree_populated"
    assert view["ksb_counts"] == {"knowledge": 6, "skill": 4, "behavior": 2}
    assert view["draft"]["saved_at_display"] == "May 16, 2023 at 2:30 PM"
    assert view["modules"][0]["title"] == "Foundations and Core Knowledge"


def test_registry_keys_by_kind_and_owner(course_session) -> None:
    registry = SessionRegistry()
    registry.put(course_session)
    assert registry.get("course", "owner-1") is course_session
    assert registry.get("review", "owner-1") is None
    assert list(registry) == [course_session]
    registry.drop("course", "owner-1")
    assert len(registry) == 0
