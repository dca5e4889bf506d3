"""Unit tests for guidance prompt rendering."""

from taskmaster.batching import BatchPlan, split_batches
from taskmaster.prompts import (
    INTRO,
    add_task_prompt,
    analyze_complexity_prompt,
    expand_task_prompt,
    parse_prd_prompt,
    related_tasks,
    render_instructions,
    update_subtask_prompt,
    update_task_prompt,
    update_tasks_prompt,
)


class TestRenderInstructions:
    """Test cases for the instruction layout."""

    def test_layout(self):
        text = render_instructions(
            "Opening line.",
            "system text",
            "user text",
            ["first", "second"],
            sections={"NOTES": "a note"},
            closing="Go.",
        )
        lines = text.splitlines()
        assert lines[0] == "Opening line."
        assert INTRO in text
        assert text.index("**NOTES:**") < text.index("**SYSTEM PROMPT:**") < text.index("**USER PROMPT:**")
        assert "1. first" in lines
        assert "2. second" in lines
        assert lines[-1] == "Go."

    def test_optional_prompts_are_omitted(self):
        text = render_instructions("Open.", None, None, ["step"])
        assert "SYSTEM PROMPT" not in text
        assert "USER PROMPT" not in text


class TestTaskCreationPrompts:
    """Test cases for add_task and parse_prd prompts."""

    def test_related_tasks_match_long_words(self, collection):
        found = related_tasks(collection.tasks, "Add password reset to the user authentication")
        assert [task.id for task in found] == [2]

    def test_add_task_prompt(self, collection):
        text = add_task_prompt(
            collection.tasks,
            6,
            "Add password reset to the user authentication",
            "high",
            ["auth", "email"],
            [],
            [2],
            [99],
            "/project/.taskmaster/tasks/tasks.json",
        )
        assert "Task #6" in text
        assert "------ Task 2: User authentication ------" in text
        assert "Dependencies: Task 1 (Project setup)" in text
        assert "- Keywords: auth, email" in text
        assert "suggest 1-4 business flow names" in text
        assert "- Rejected dependencies: [99]" in text
        assert "priority 'high'" in text
        assert "/project/.taskmaster/tasks/tasks.json" in text

    def test_parse_prd_prompt(self):
        text = parse_prd_prompt("# Shop\nSell things", "docs/prd.txt", 8, 6, True, "tasks.json")
        assert "about 8 top-level tasks" in text
        assert "starting at 6" in text
        assert "Look up current libraries" in text
        assert '"sourceFile": "docs/prd.txt"' in text

    def test_parse_prd_without_research(self):
        text = parse_prd_prompt("content", "prd.txt", 10, 1, False, "tasks.json")
        assert "Look up current libraries" not in text


class TestExpandPrompt:
    """Test cases for subtask expansion prompts."""

    def test_default_prompt(self, collection):
        text = expand_task_prompt(collection.get_task(3), 4, 1, None, "Use JWT", False)
        assert "into 4 concrete subtasks" in text
        assert "Additional context: Use JWT" in text
        assert "clear_subtasks" not in text
        assert "appended to the existing ones" in text

    def test_force_clears_first(self, collection):
        text = expand_task_prompt(collection.get_task(2), 3, 1, None, "", True)
        assert 'Call clear_subtasks with task_ids "2"' in text
        assert "Force mode" in text

    def test_expansion_prompt_from_analysis(self, collection):
        text = expand_task_prompt(collection.get_task(2), 5, 3, "Split by endpoint", "", False)
        assert "exactly 5 subtasks" in text
        assert "Ids start at 3" in text
        assert "Split by endpoint" in text
        assert '"2.3"' in text


class TestUpdatePrompts:
    """Test cases for update prompts."""

    def test_update_task_prompt(self, collection):
        text = update_task_prompt(collection.get_task(3), "Use Redis", "tasks.json")
        assert '"title": "Session management"' in text
        assert "Use Redis" in text
        assert "Replace task 3 in tasks.json" in text

    def test_update_subtask_prompt_includes_neighbours(self, collection):
        parent = collection.get_task(2)
        text = update_subtask_prompt(parent, parent.find_subtask(2), "Add rate limiting", "tasks.json")
        assert 'Previous Subtask: {"id": "2.1"' in text
        assert "Next Subtask" not in text
        assert "- Full ID: 2.2" in text

    def test_single_batch_update(self, collection):
        tasks = [collection.get_task(2), collection.get_task(3)]
        plan = BatchPlan(False, 2, 1, 100)
        text = update_tasks_prompt(
            tasks, "Switch to OAuth", plan, split_batches([2, 3], plan), "from task 2", "Tasks 2, 3", "tasks.json"
        )
        assert "Update 2 task(s)" in text
        assert "Switch to OAuth" in text
        assert "BATCH BREAKDOWN" not in text

    def test_batched_update(self, collection):
        tasks = list(collection.tasks)
        plan = BatchPlan(True, 2, 3, 30000, 10000)
        groups = split_batches([task.id for task in tasks], plan)
        text = update_tasks_prompt(tasks, "Rename", plan, groups, "from task 1", "Tasks 1-5", "tasks.json")
        assert "in 3 batches" in text
        assert "Batch 3: Tasks 5 (1 tasks)" in text
        assert "[BATCH_TASKS_JSON]" in text
        assert text.splitlines()[-1] == "Process Batch 1 now."


class TestComplexityPrompt:
    """Test cases for complexity analysis prompts."""

    def test_single_batch(self, collection):
        plan = BatchPlan(False, 3, 1, 100)
        tasks = collection.tasks[1:4]
        text = analyze_complexity_prompt(tasks, plan, split_batches([2, 3, 4], plan), 5, 1)
        assert "Analyse the complexity of 3 task(s)" in text
        assert "save_complexity_analysis" in text
        assert '"complexityScore": <number 1-10>' in text

    def test_resumed_batches(self, collection):
        plan = BatchPlan(True, 2, 2, 50000, 25000)
        groups = split_batches([2, 3, 4], plan, resume_from=2)
        text = analyze_complexity_prompt(collection.tasks[1:4], plan, groups, 6, 2)
        assert "- Resuming from batch: 2" in text
        assert "COMPLETED" in text
        assert text.splitlines()[-1] == "Process batch 2 now."
