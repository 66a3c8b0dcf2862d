"""Default course skeleton built from a standard's KSBs.

The output shape depends only on the ordered input; ids come from the
injected factory and are free to differ between calls.
"""

from __future__ import annotations

from typing import Dict, List, Sequence

from .ids import IdFactory, uuid_ids
from .schemas import Classification, Lesson, LessonType, Module, ReferenceItem


def partition(items: Sequence[ReferenceItem]) -> Dict[Classification, List[ReferenceItem]]:
    buckets: Dict[Classification, List[ReferenceItem]] = {c: [] for c in Classification}
    for item in items:
        buckets[item.classification].append(item)
    return buckets


def _seeded_module(
    ids: IdFactory,
    *,
    title: str,
    description: str,
    order: int,
    items: List[ReferenceItem],
    lesson_title: str,
    lesson_description: str,
    module_cap: int,
    lesson_cap: int,
) -> Module:
    module_id = ids("module")
    lesson = Lesson(
        id=ids("lesson"),
        module_id=module_id,
        title=lesson_title,
        description=lesson_description,
        type=LessonType.CONTENT,
        order=1,
        ksb_ids=[item.id for item in items[:lesson_cap]],
    )
    return Module(
        id=module_id,
        title=title,
        description=description,
        order=order,
        ksb_ids=[item.id for item in items[:module_cap]],
        lessons=[lesson],
    )


def synthesize(
    items: Sequence[ReferenceItem],
    *,
    ids: IdFactory = uuid_ids,
    module_cap: int = 5,
    lesson_cap: int = 3,
) -> List[Module]:
    buckets = partition(items)
    modules: List[Module] = []

    if items:
        # The introductory lesson carries no KSBs of its own
        modules.append(_seeded_module(
            ids,
            title="Foundations and Core Knowledge",
            description="Core knowledge and foundations for the apprenticeship",
            order=len(modules) + 1,
            items=buckets[Classification.KNOWLEDGE],
            lesson_title="Introduction to the Standard",
            lesson_description="Overview of the apprenticeship standard and expectations",
            module_cap=module_cap,
            lesson_cap=0,
        ))

    if buckets[Classification.SKILL]:
        modules.append(_seeded_module(
            ids,
            title="Practical Skills Development",
            description="Development of key practical skills",
            order=len(modules) + 1,
            items=buckets[Classification.SKILL],
            lesson_title="Core Skills Introduction",
            lesson_description="Introduction to the core skills for this standard",
            module_cap=module_cap,
            lesson_cap=lesson_cap,
        ))

    if buckets[Classification.BEHAVIOR]:
        modules.append(_seeded_module(
            ids,
            title="Professional Behaviors",
            description="Development of key professional behaviors",
            order=len(modules) + 1,
            items=buckets[Classification.BEHAVIOR],
            lesson_title="Professional Conduct and Expectations",
            lesson_description="Introduction to professional behaviors and expectations",
            module_cap=module_cap,
            lesson_cap=lesson_cap,
        ))

    assessment_id = ids("module")
    modules.append(Module(
        id=assessment_id,
        title="Assessment Preparation",
        description="Preparation for final assessment",
        order=len(modules) + 1,
        lessons=[
            Lesson(
                id=ids("lesson"),
                module_id=assessment_id,
                title="Assessment Overview",
                description="Overview of the assessment process and requirements",
                type=LessonType.CONTENT,
                order=1,
            ),
            Lesson(
                id=ids("lesson"),
                module_id=assessment_id,
                title="Mock Assessment",
                description="Practice assessment activities",
                type=LessonType.ASSESSMENT,
                order=2,
            ),
        ],
    ))
    return modules
