"""
Project templates: predefined task trees that can be stamped out for an owner.
"""
from pathlib import Path
from typing import Dict, List, Union

from pydantic import ValidationError

from .data.io import load_data_file
from .logs import get_logger
from .models import ProjectTemplate, TaskNode, TaskStatus
from .recovery import FieldValidationError

log = get_logger("templates")

def _task(template_task_id, title, order, parent=None, description=None):
    return ProjectTemplate.TemplateTask(
        template_task_id=template_task_id,
        parent_template_task_id=parent,
        title=title,
        description=description,
        order=order,
    )

BUILTIN_TEMPLATES: Dict[str, ProjectTemplate] = {
    "personal-growth": ProjectTemplate(
        title="Personal Growth Plan",
        description="A template for personal development goals.",
        tasks=[
            _task("t1", "Define long-term goals", 1),
            _task("t2", "Set quarterly objectives", 1, parent="t1"),
            _task("t3", "Identify key skills", 1, parent="t2"),
            _task("t4", "Learn new skill", 2, description="Choose a skill and start learning."),
            _task("t5", "Complete online course", 1, parent="t4"),
            _task("t6", "Practice daily", 2, parent="t4"),
        ],
    ),
    "website": ProjectTemplate(
        title="Website Development",
        description="Standard steps for launching a new website.",
        tasks=[
            _task("w1", "Project Planning", 1),
            _task("w2", "Define scope and requirements", 1, parent="w1"),
            _task("w3", "Create wireframes", 2, parent="w1"),
            _task("w4", "Design Phase", 2),
            _task("w5", "Develop UI/UX designs", 1, parent="w4"),
            _task("w6", "Select tech stack", 2, parent="w4"),
            _task("w7", "Development Phase", 3),
            _task("w8", "Build frontend", 1, parent="w7"),
            _task("w9", "Build backend APIs", 2, parent="w7"),
            _task("w10", "Implement database", 3, parent="w7"),
            _task("w11", "Testing & Deployment", 4),
            _task("w12", "Conduct user acceptance testing (UAT)", 1, parent="w11"),
            _task("w13", "Deploy to production", 2, parent="w11"),
        ],
    ),
}

def get_template(name: str) -> ProjectTemplate:
    try:
        return BUILTIN_TEMPLATES[name]
    except KeyError:
        raise FieldValidationError(
            f"Unknown template '{name}'. Available: {', '.join(sorted(BUILTIN_TEMPLATES))}"
        ) from None

def load_template(file_path: Union[Path, str]) -> ProjectTemplate:
    """Load a template from a YAML or JSON file."""
    data = load_data_file(file_path)
    if data is None:
        raise FieldValidationError(f"Template file not found: {file_path}")
    try:
        return ProjectTemplate.model_validate(data)
    except ValidationError as e:
        raise FieldValidationError(f"Invalid template {file_path}: {e}") from e

def expand_template(template: ProjectTemplate, root: TaskNode) -> List[TaskNode]:
    """
    Build the nodes for ``template`` beneath an already built ``root``.

    Siblings keep their template order but are renumbered 0..n-1. The result
    starts with ``root`` and lists every parent before its children.
    """
    nodes = [root]
    stack = [(None, root.id)]
    while stack:
        template_parent, parent_id = stack.pop()
        for position, task in enumerate(template.children_of(template_parent)):
            status = task.status or TaskStatus.NOT_STARTED
            child = TaskNode.build(
                owner_id=root.owner_id,
                parent_id=parent_id,
                title=task.title,
                description=task.description,
                status=status,
                completion_percentage=100.0 if status == TaskStatus.COMPLETED else 0.0,
                order=position,
            )
            nodes.append(child)
            stack.append((task.template_task_id, child.id))
    log.debug(f"Expanded template '{template.title}' into {len(nodes)} node(s)")
    return nodes
