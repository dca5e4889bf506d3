"""Prompt templates for the guidance operations.

Guidance operations never call a language model. They render a system
prompt, a user prompt and step-by-step instructions that the calling agent
executes, persisting results through the mutation tools or the task file.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence

from .batching import BatchPlan, batch_breakdown
from .models import Subtask, Task


INTRO = (
    "**IMPORTANT**: Execute these instructions right away. Follow the system prompt "
    "and the user prompt below exactly as written."
)

PRESERVE_COMPLETED = (
    'Any subtask with "status": "done" or "status": "completed" must be kept exactly as it is. '
    "Build the changes around those completed items."
)

RELATED_TASK_LIMIT = 8
DETAILED_TASK_LIMIT = 5
DETAILS_PREVIEW = 400


def to_json(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


def render_instructions(
    opening: str,
    system_prompt: Optional[str],
    user_prompt: Optional[str],
    next_steps: Sequence[str],
    sections: Optional[Dict[str, str]] = None,
    closing: str = "Start now.",
) -> str:
    """Assemble the instruction text returned to the caller."""
    parts = [opening, "", INTRO, ""]
    for title, body in (sections or {}).items():
        parts.extend([f"**{title}:**", body, ""])
    if system_prompt:
        parts.extend(["**SYSTEM PROMPT:**", system_prompt, ""])
    if user_prompt:
        parts.extend(["**USER PROMPT:**", user_prompt, ""])
    parts.append("**YOUR NEXT ACTION:**")
    parts.extend(f"{index}. {step}" for index, step in enumerate(next_steps, 1))
    parts.extend(["", closing])
    return "\n".join(parts)


# ----------------------------------------------------------------------
# Task creation
# ----------------------------------------------------------------------

ADD_TASK_SYSTEM = """You create well-structured tasks for a software development project.
Generate exactly one new task from the user's description and follow the JSON structure given.
Choose dependencies carefully:
1. Depend only on tasks that must be finished before this one can start.
2. Prefer tasks that build the same functionality over generic foundation tasks.
3. Leave out tasks that are merely related; every dependency must be a real prerequisite.
4. Prefer tasks that are already complete when two choices are equivalent.
5. Recent tasks (higher ids) are often more relevant for new functionality.
The dependencies array holds task ids (numbers)."""

TASK_STRUCTURE = """{
  "title": "Task title",
  "description": "One or two sentences describing the task",
  "details": "Implementation steps, considerations and technical approach",
  "testStrategy": "How to verify the implementation",
  "dependencies": [1, 3],
  "keywords": ["keyword1", "keyword2", "keyword3"],
  "flowNames": ["Business Flow Name"]
}"""


def related_tasks(tasks: Sequence[Task], prompt: str) -> List[Task]:
    """Tasks sharing a word longer than three characters with ``prompt``."""
    words = [word for word in prompt.lower().split() if len(word) > 3]
    found = []
    for task in tasks:
        text = f"{task.title} {task.description} {task.details}".lower()
        if any(word in text for word in words):
            found.append(task)
        if len(found) == RELATED_TASK_LIMIT:
            break
    return found


def _task_context(tasks: Sequence[Task], prompt: str) -> str:
    if not tasks:
        return ""
    by_id = {task.id: task for task in tasks}
    related = related_tasks(tasks, prompt)
    lines: List[str] = []
    if related:
        lines.append("Existing tasks that may be related:")
        lines.extend(f"- Task {t.id}: {t.title} - {t.description}" for t in related)
        lines.append("")
        lines.append("Details of the most relevant tasks:")
        for task in related[:DETAILED_TASK_LIMIT]:
            lines.append(f"------ Task {task.id}: {task.title} ------")
            lines.append(f"Description: {task.description}")
            lines.append(f"Status: {task.status}")
            lines.append(f"Priority: {task.effective_priority}")
            if task.dependencies:
                names = []
                for dep in task.dependencies:
                    dep_task = by_id.get(dep) if isinstance(dep, int) else None
                    names.append(f"Task {dep} ({dep_task.title})" if dep_task else f"Task {dep}")
                lines.append(f"Dependencies: {', '.join(names)}")
            if task.details:
                details = task.details
                if len(details) > DETAILS_PREVIEW:
                    details = details[:DETAILS_PREVIEW] + "... (truncated)"
                lines.append(f"Implementation Details: {details}")
    recent = [t for t in sorted(tasks, key=lambda t: -t.id) if t not in related][:3]
    if recent:
        lines.append("")
        lines.append("Recently created tasks:")
        lines.extend(f"- Task {t.id}: {t.title} - {t.description}" for t in recent)
    return "\n".join(lines)


def add_task_prompt(
    tasks: Sequence[Task],
    new_task_id: int,
    prompt: str,
    priority: str,
    keywords: Sequence[str],
    flow_names: Sequence[str],
    valid_dependencies: Sequence[Any],
    invalid_dependencies: Sequence[Any],
    target_file: str,
) -> str:
    keyword_line = (
        f"- Keywords: {', '.join(keywords)}" if keywords
        else "- No keywords given: suggest 3-8 technical or business terms"
    )
    flow_line = (
        f"- Flow names: {', '.join(flow_names)}" if flow_names
        else "- No flow names given: suggest 1-4 business flow names"
    )
    user_prompt = "\n".join([
        f'You are writing Task #{new_task_id}. From the request "{prompt}", create one new task.',
        "",
        _task_context(tasks, prompt),
        "",
        "USER PROVIDED ENHANCEMENTS:",
        keyword_line,
        flow_line,
        "",
        "Review the existing tasks above before choosing dependencies. Return an empty array when "
        "nothing beyond already implemented infrastructure is required.",
        "Keep keywords and flow names consistent with existing tasks where possible.",
        "",
        "Return a single JSON object with this structure:",
        TASK_STRUCTURE,
        "",
        "Do not put the task id in the title.",
    ])
    return render_instructions(
        "Create a new task from the request below.",
        ADD_TASK_SYSTEM,
        user_prompt,
        [
            "Generate the task JSON described above.",
            f"Give it id {new_task_id}, status 'pending' and priority '{priority}'.",
            f"Merge the suggested dependencies with the validated ones: {json.dumps(list(valid_dependencies))}.",
            f"Append the task to the tasks array in {target_file}.",
            "Run generate_task_files to refresh the task files.",
        ],
        sections={
            "VALIDATION NOTES": (
                f"- Rejected dependencies: {json.dumps(list(invalid_dependencies))}\n"
                f"- Accepted dependencies: {json.dumps(list(valid_dependencies))}"
            ),
        },
    )


RESEARCH_ADDITION = """
Before breaking the document down:
1. Look up current libraries, frameworks and practices suited to the project.
2. Point out technical risks the document does not mention, without dropping explicit requirements.
3. Name concrete libraries and versions in the implementation details.
Always keep the most direct path to implementation."""


def parse_prd_prompt(
    prd_content: str,
    prd_path: str,
    num_tasks: int,
    next_id: int,
    research: bool,
    target_file: str,
) -> str:
    system_prompt = f"""You turn Product Requirements Documents into an ordered, dependency-aware list of development tasks in JSON.{RESEARCH_ADDITION if research else ''}
Generate about {num_tasks} top-level tasks; more when the document is large or detailed.
Number tasks sequentially starting at {next_id}. Each task has the fields:
{{
  "id": number,
  "title": string,
  "description": string,
  "status": "pending",
  "dependencies": number[],
  "priority": "high" | "medium" | "low",
  "details": string,
  "testStrategy": string,
  "keywords": string[] (3-8 terms),
  "flowNames": string[] (1-4 business flows)
}}
Guidelines:
1. Each task is atomic and has one responsibility.
2. Setup and core functionality come first, advanced features later.
3. A task may only depend on tasks with lower ids, including existing tasks below {next_id}.
4. Follow every explicit technology or schema requirement in the document.
5. Respond with a JSON object whose "tasks" key holds the array, and nothing else."""
    user_prompt = (
        f"Break this Product Requirements Document into about {num_tasks} tasks, "
        f"starting at id {next_id}:\n\n{prd_content}\n\n"
        f'Return {{"tasks": [...], "metadata": {{"projectName": "PRD Implementation", '
        f'"totalTasks": {num_tasks}, "sourceFile": "{prd_path}"}}}}'
    )
    return render_instructions(
        "Parse the PRD below into tasks.",
        system_prompt,
        user_prompt,
        [
            "Generate the tasks JSON described above.",
            f"Append the new tasks to the tasks array in {target_file} without removing existing tasks.",
            "Run generate_task_files to create the task files.",
        ],
    )


# ----------------------------------------------------------------------
# Subtask expansion
# ----------------------------------------------------------------------


def expand_task_prompt(
    task: Task,
    num_subtasks: int,
    next_subtask_id: int,
    expansion_prompt: Optional[str],
    additional_context: str,
    force: bool,
) -> str:
    if expansion_prompt:
        system_prompt = (
            f"Break the task down into exactly {num_subtasks} subtasks. Respond only with a JSON object "
            f'whose "subtasks" key holds the array. Every subtask has "id", "title", "description", '
            f'"dependencies", "details" and "status". Ids start at {next_subtask_id} and are sequential, '
            f"dependencies only reference earlier ids from this response and status is 'pending'."
        )
        user_prompt = expansion_prompt + (f"\n\n{additional_context}" if additional_context else "")
    else:
        system_prompt = f"""You break a high-level software task into {num_subtasks} concrete subtasks.
Subtasks are specific, ordered, cover the whole parent task and each handle one distinct part.
Each subtask has: id (sequential, starting at {next_subtask_id}), title, description,
dependencies (ids of earlier subtasks from this response), details and an optional testStrategy.
Respond only with a JSON object whose "subtasks" key holds the array."""
        user_prompt = "\n".join([
            f"Break this task into exactly {num_subtasks} subtasks:",
            "",
            f"Task ID: {task.id}",
            f"Title: {task.title}",
            f"Description: {task.description}",
            f"Current details: {task.details or 'None'}",
        ] + (["", f"Additional context: {additional_context}"] if additional_context else []))

    steps = []
    if force:
        steps.append(f'Call clear_subtasks with task_ids "{task.id}" to drop the existing subtasks.')
    steps.extend([
        "Generate the subtasks JSON described above.",
        f"Call add_subtask once per generated subtask with parent_id {task.id}, its title, description, "
        f"details and status 'pending'. Write dependencies in the \"parentId.subtaskId\" form, "
        f'for example "{task.id}.{next_subtask_id}".',
        "Run generate_task_files to refresh the task files.",
    ])
    mode = (
        "Force mode: existing subtasks are cleared first."
        if force else "New subtasks are appended to the existing ones."
    )
    return render_instructions(
        f"Expand task {task.id} into subtasks and create each one.",
        system_prompt,
        user_prompt,
        steps,
        sections={"MODE": mode},
        closing="Call add_subtask for every generated subtask; do not stop at the JSON.",
    )


# ----------------------------------------------------------------------
# Updates
# ----------------------------------------------------------------------

UPDATE_TASK_SYSTEM = f"""You update one software development task from new context.
1. Never change the task title.
2. Keep the id, status and dependencies unless the context says otherwise.
3. Update the description, details and test strategy to reflect the new information.
4. Change nothing the context does not call for.
5. {PRESERVE_COMPLETED}
6. When a completed subtask must be undone, add a new subtask describing the change instead.
7. New subtasks get ids that do not clash with existing ones.
Return the full task as one JSON object."""


def update_task_prompt(task: Task, prompt: str, target_file: str) -> str:
    user_prompt = (
        f"Here is the task to update:\n{to_json(task.to_dict())}\n\n"
        f"Update it with this new context:\n{prompt}\n\n{PRESERVE_COMPLETED}\n\n"
        "Return only the updated task as a JSON object."
    )
    return render_instructions(
        f"Update task {task.id} with the new context.",
        UPDATE_TASK_SYSTEM,
        user_prompt,
        [
            "Generate the updated task JSON.",
            f"Check that the id is still {task.id} and that completed subtasks are untouched.",
            f"Replace task {task.id} in {target_file} with the updated task.",
            "Run generate_task_files to refresh the task files.",
        ],
    )


UPDATE_SUBTASK_SYSTEM = """You add information to one subtask.
From the user's request and the context provided, write only the new text to append to the subtask details.
1. Return plain text, not JSON.
2. Do not repeat the existing details unless asked to rewrite them.
3. No timestamps, tags or markdown.
4. Be concise and skip conversational filler."""


def _brief(task: Optional[Any], parent_id: int) -> Optional[Dict[str, Any]]:
    if task is None:
        return None
    return {"id": f"{parent_id}.{task.id}", "title": task.title, "status": task.status}


def update_subtask_prompt(
    parent: Task,
    subtask: Subtask,
    prompt: str,
    target_file: str,
) -> str:
    index = parent.subtasks.index(subtask)
    previous = parent.subtasks[index - 1] if index > 0 else None
    following = parent.subtasks[index + 1] if index + 1 < len(parent.subtasks) else None

    context = [f"Parent Task: {json.dumps({'id': parent.id, 'title': parent.title})}"]
    if previous is not None:
        context.append(f"Previous Subtask: {json.dumps(_brief(previous, parent.id))}")
    if following is not None:
        context.append(f"Next Subtask: {json.dumps(_brief(following, parent.id))}")
    context.append(f"Current Subtask Details (context only):\n{subtask.details or '(No existing details)'}")

    user_prompt = (
        "Task Context:\n" + "\n".join(context) + f'\n\nUser Request: "{prompt}"\n\n'
        "What new text should be appended to this subtask's details? Return only that text."
    )
    full_id = f"{parent.id}.{subtask.id}"
    return render_instructions(
        f"Append new information to subtask {full_id}.",
        UPDATE_SUBTASK_SYSTEM,
        user_prompt,
        [
            "Generate the new text.",
            'Wrap it as "<info added on [ISO timestamp]>\\n[text]\\n</info added on [ISO timestamp]>".',
            f"Append the block to the details of subtask {subtask.id} of task {parent.id} in {target_file}.",
            "Run generate_task_files to refresh the task files.",
        ],
        sections={
            "SUBTASK LOCATION": f"- Parent Task ID: {parent.id}\n- Subtask ID: {subtask.id}\n- Full ID: {full_id}",
        },
    )


def update_tasks_system_prompt(batched: bool, selection: str) -> str:
    scope = "a batch of tasks" if batched else "a set of tasks"
    return f"""You update software development tasks from new context.
You receive {scope} {selection}.
1. Keep ids, statuses and dependencies unless the context says otherwise.
2. Update titles, descriptions, details, test strategies, keywords (3-8 per task) and flowNames (1-4 per task).
3. Change nothing the context does not call for.
4. Return every task you were given, in order, as one JSON array.
5. {PRESERVE_COMPLETED}
6. When a completed subtask must be undone, add a new subtask describing the change instead.
7. Keep each task's "relevantTasks" listing the ids of tasks that must change together with it."""


def update_tasks_prompt(
    tasks: Sequence[Task],
    prompt: str,
    plan: BatchPlan,
    groups: Sequence[Dict[str, Any]],
    selection: str,
    chain_summary: str,
    target_file: str,
    start_batch: int = 1,
) -> str:
    system_prompt = update_tasks_system_prompt(plan.use_batches, selection)
    if plan.use_batches:
        per_batch = (
            "For each batch, take its tasks from the full list and apply:\n"
            "   Here are the tasks to update:\n   [BATCH_TASKS_JSON]\n\n"
            f"   Update them with this new context:\n   {prompt}\n\n   {PRESERVE_COMPLETED}\n\n"
            "   Return only the updated tasks as a JSON array."
        )
        return render_instructions(
            f"Update {len(tasks)} tasks in {plan.total_batches} batches.",
            system_prompt,
            None,
            [
                f"Start with batch {start_batch}; batches marked completed are already applied."
                if start_batch > 1 else "Start with the first batch and work through them in order.",
                "Generate the updated tasks JSON for the batch and validate it.",
                f"Replace those tasks in {target_file}, leaving every other task unchanged.",
                "Move on to the next batch until all are done.",
                "Run generate_task_files to refresh the task files.",
            ],
            sections={
                "BATCH CONFIGURATION": (
                    f"- Total tasks to update: {len(tasks)}\n"
                    f"- Batch size: {plan.batch_size}\n"
                    f"- Total batches: {plan.total_batches}\n"
                    f"- Estimated tokens per batch: ~{plan.tokens_per_batch}"
                    + (f"\n- Resuming from batch: {start_batch}" if start_batch > 1 else "")
                ),
                "SELECTED TASKS": chain_summary,
                "BATCH PROCESS": per_batch,
                "BATCH BREAKDOWN": batch_breakdown(groups, with_status=start_batch > 1),
            },
            closing=f"Process Batch {start_batch} now.",
        )

    user_prompt = (
        f"Here are the tasks to update:\n{to_json([task.to_dict() for task in tasks])}\n\n"
        f"Update them with this new context:\n{prompt}\n\n{PRESERVE_COMPLETED}\n\n"
        "Return only the updated tasks as a JSON array."
    )
    return render_instructions(
        f"Update {len(tasks)} task(s) with the new context.",
        system_prompt,
        user_prompt,
        [
            "Generate the updated tasks JSON.",
            f"Replace those tasks in {target_file}, leaving every other task unchanged.",
            "Run generate_task_files to refresh the task files.",
        ],
        sections={"SELECTED TASKS": chain_summary},
    )


# ----------------------------------------------------------------------
# Complexity analysis
# ----------------------------------------------------------------------

COMPLEXITY_SCHEMA = """[
  {
    "taskId": <number>,
    "taskTitle": "<string>",
    "complexityScore": <number 1-10>,
    "recommendedSubtasks": <number>,
    "expansionPrompt": "<string>",
    "reasoning": "<string>"
  }
]"""

COMPLEXITY_REQUEST = (
    "Rate the complexity of each task below on a 1-10 scale, recommend how many subtasks it "
    "should be expanded into, and give a short reasoning plus an initial expansion prompt."
)


def complexity_system_prompt(batched: bool) -> str:
    lines = ["You are a software architect rating task complexity."]
    if batched:
        lines.append("You are processing one batch at a time; analyse every task in it.")
    lines.append("Respond only with the requested JSON array.")
    return "\n".join(lines)


def analyze_complexity_prompt(
    tasks: Sequence[Task],
    plan: BatchPlan,
    groups: Sequence[Dict[str, Any]],
    threshold: float,
    start_batch: int,
) -> str:
    system_prompt = complexity_system_prompt(plan.use_batches)
    if plan.use_batches:
        per_batch = (
            f"   {COMPLEXITY_REQUEST}\n\n   Tasks:\n   [BATCH_TASKS_JSON]\n\n"
            f"   Respond only with a JSON array matching:\n{COMPLEXITY_SCHEMA}"
        )
        return render_instructions(
            f"Analyse the complexity of {len(tasks)} tasks in {plan.total_batches} batches.",
            system_prompt,
            None,
            [
                f"Start with batch {start_batch}; batches marked completed are already saved.",
                "Generate the analysis JSON for the batch and check every score is between 1 and 10.",
                "Call save_complexity_analysis with the analyses and the batch number. It merges them "
                "into the report by taskId, keeping analyses of other tasks.",
                "Continue with the next pending batch until all are done.",
            ],
            sections={
                "BATCH CONFIGURATION": (
                    f"- Total tasks to analyse: {len(tasks)}\n"
                    f"- Batch size: {plan.batch_size}\n"
                    f"- Total batches: {plan.total_batches}\n"
                    f"- Estimated tokens per batch: ~{plan.tokens_per_batch}\n"
                    f"- Expansion threshold: {threshold}"
                    + (f"\n- Resuming from batch: {start_batch}" if start_batch > 1 else "")
                ),
                "BATCH PROCESS": per_batch,
                "BATCH BREAKDOWN": batch_breakdown(groups, with_status=True),
            },
            closing=f"Process batch {start_batch} now.",
        )

    user_prompt = (
        f"{COMPLEXITY_REQUEST}\n\nTasks:\n{to_json([task.to_dict() for task in tasks])}\n\n"
        f"Respond only with a JSON array matching:\n{COMPLEXITY_SCHEMA}"
    )
    return render_instructions(
        f"Analyse the complexity of {len(tasks)} task(s).",
        system_prompt,
        user_prompt,
        [
            "Generate the analysis JSON and check every score is between 1 and 10.",
            "Call save_complexity_analysis with the analyses. It merges them into the report by "
            "taskId, keeping analyses of other tasks.",
            "Run complexity_report to review the result.",
        ],
        sections={"EXPANSION THRESHOLD": str(threshold)},
    )
