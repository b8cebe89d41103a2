"""Prompt builders for each decision point of an agent run.

Every structured prompt asks for one-line JSON; replies are parsed with
``ParsedAgentResponse.parse`` so malformed output degrades to empty fields.
"""

from __future__ import annotations

from agentruntime.models.checklist import TaskChecklist

SYSTEM_PROMPT = (
    "You are an autonomous agent working inside a developer's terminal. "
    "When asked for JSON, reply with a single JSON object on one line and nothing else."
)


def _cwd(cwd: str) -> str:
    return cwd or "(unknown)"


def _checklist_block(checklist: TaskChecklist | None) -> str:
    if checklist is None or not checklist.items:
        return "(no checklist)"
    return f"({checklist.completed_count}/{len(checklist.items)} completed):\n{checklist.status_lines()}"


def decision_prompt(user_prompt: str) -> str:
    return f"""You are operating in an agent mode inside a terminal-centric app. Given the user's request below, decide one of two actions: either respond directly (RESPOND) or run one or more shell commands or tools (RUN).
Reply strictly in JSON on one line with keys: {{"action":"RESPOND|RUN", "reason":"short sentence"}}.
User: {user_prompt}"""


def goal_prompt(user_prompt: str) -> str:
    return f"""Convert the user's request below into a concise actionable goal a shell-capable agent should accomplish.
Reply as JSON: {{"goal":"short goal phrase"}}.
User: {user_prompt}"""


def plan_prompt(goal: str, cwd: str, shell: str = "bash") -> str:
    return f"""Create a numbered plan (3-10 steps) to achieve this goal.
Each step should be a concrete action that can be verified.
Consider: what commands to run, what to check, what could go wrong.
IMPORTANT: Include a final verification step to confirm the goal is achieved.
Reply JSON: {{"plan": ["step 1 description", "step 2 description", ..., "Verify: <verification action>"], "estimated_commands": 5}}
GOAL: {goal}
ENVIRONMENT:
- Current Working Directory: {_cwd(cwd)}
- Shell: {shell}"""


def reflection_prompt(goal: str, checklist_status: str, context: list[str]) -> str:
    recent = "\n".join(context[-20:])
    return f"""Reflect on progress toward the goal. Assess what has been accomplished and what remains.

REFLECTION QUESTIONS:
1. What files/artifacts have been created or modified?
2. Have you verified each completed item works correctly?
3. What is the most likely failure mode at this point?
4. What verification steps should be done before completion?

Reply JSON: {{"progress_percent": 0-100, "on_track": true/false, "completed": ["task1", ...], "remaining": ["task1", ...], "should_adjust": true/false, "new_approach": "optional new strategy if should_adjust is true"}}

GOAL: {goal}
CHECKLIST:
{checklist_status}
CONTEXT:
{recent}"""


def stuck_prompt(goal: str, recent_commands: list[str]) -> str:
    return f"""The agent appears stuck, running similar commands repeatedly without progress.
Recent commands: {"; ".join(recent_commands)}
Decide: is this truly stuck? If so, suggest a completely different approach.
Reply JSON: {{"is_stuck": true/false, "new_approach": "different strategy to try", "should_stop": true/false}}
GOAL: {goal}"""


def step_prompt(
    goal: str,
    iteration: int,
    max_iterations: int,
    tool_descriptions: str,
    can_run_commands: bool,
    checklist_context: str,
    context: str,
    cwd: str,
    shell: str = "bash",
) -> str:
    limit = "unlimited" if max_iterations == 0 else str(max_iterations)
    command_line = (
        '- "command": run a simple shell command (ls, mkdir, git, npm, etc.) given in "command"\n'
        if can_run_commands
        else "- Shell commands are NOT available in this mode; use only the tools listed.\n"
    )
    return f"""You are a terminal agent. Based on the GOAL and CONTEXT below, decide the next action.

GOAL REMINDER: {goal}
Progress: Step {iteration} of max {limit}

AVAILABLE TOOLS (prefer these over complex shell commands):
{tool_descriptions}
{command_line}
RULES:
- For creating NEW files, use write_file
- For EDITING existing files, use edit_file (search/replace) or insert_lines/delete_lines
- For reading files, use read_file instead of cat
- For servers: use run_background to start, http_request to test endpoints
- ALWAYS verify your edits by reading the file after making changes
- Before declaring done, VERIFY the goal is achieved (check files exist, test endpoints, etc.)
- Output strictly valid JSON on ONE line

RESPONSE FORMAT:
{{"step":"description", "tool":"tool_name", "command":"shell command if tool=command", "tool_args":{{"path":"...", "content":"..."}}, "checklist_item": 1}}

NOTE: Include "checklist_item" with the item number you're working on from the checklist.

ENVIRONMENT:
- CWD: {_cwd(cwd)}
- Shell: {shell}

{checklist_context}

CONTEXT:
{context}"""


def tool_assess_prompt(goal: str, checklist: TaskChecklist | None, tool: str, result: str) -> str:
    status = checklist.status_lines() if checklist else "(no checklist)"
    return f"""Based on the tool result and checklist status, is the GOAL now complete?
The goal is ONLY complete if ALL checklist items are marked completed.
Reply JSON: {{"done":true|false, "reason":"short"}}.
GOAL: {goal}
CHECKLIST:
{status}
TOOL USED: {tool}
RESULT: {result[:500]}"""


def analyze_prompt(goal: str, command: str, output: str, cwd: str, exit_code: int | None) -> str:
    return f"""Analyze the following command execution and decide outcome and next action.
Reply strictly as JSON on one line with keys:
{{"outcome":"success|fail|uncertain", "reason":"short", "next":"continue|stop|fix", "fixed_command":"optional replacement if next=fix else empty"}}
GOAL: {goal}
COMMAND: {command}
OUTPUT:
{output or "(no output)"}
CWD: {_cwd(cwd)}
EXIT_CODE: {"" if exit_code is None else exit_code}"""


def assess_prompt(
    goal: str,
    checklist: TaskChecklist | None,
    cwd: str,
    last_command: str,
    last_output: str,
    exit_code: int | None,
    context: str,
    after_fix: bool = False,
) -> str:
    opening = (
        "Decide if the GOAL is now achieved after the fix attempt."
        if after_fix
        else "Given the GOAL, CHECKLIST, and CONTEXT, decide if the goal is accomplished."
    )
    return f"""{opening}
The goal is ONLY complete if ALL checklist items are marked completed.
Reply JSON: {{"done":true|false, "reason":"short"}}.
GOAL: {goal}
CHECKLIST {_checklist_block(checklist)}
BASE CONTEXT:
- Current Working Directory: {_cwd(cwd)}
- Last Command: {last_command}
- Last Output: {last_output}
- Last Exit Code: {"" if exit_code is None else exit_code}
CONTEXT:
{context}"""


def verification_prompt(goal: str, context: list[str]) -> str:
    recent = "\n".join(context[-10:])
    return f"""The agent believes the goal is complete. Suggest 1-3 quick verification checks to confirm.
For each check, specify the tool to use (read_file, list_dir, http_request, check_process, search_files).
Reply JSON: {{"checks": [{{"description": "what to verify", "tool": "tool_name", "args": {{"arg1": "val1"}}}}]}}

GOAL: {goal}
CONTEXT (last 10 entries):
{recent}"""


def continue_prompt(goal: str, context: list[str]) -> str:
    recent = "\n".join(context[-10:])
    return f"""Decide whether to CONTINUE or STOP given diminishing returns. Reply JSON: {{"decision":"CONTINUE|STOP", "reason":"short"}}.
GOAL: {goal}
CONTEXT (last 10 entries):
{recent}"""


def summary_prompt(goal: str, context: str, stopped_early: bool = False) -> str:
    if stopped_early:
        opening = "Summarize what was done so far and suggest next steps. Reply markdown."
    else:
        opening = "Summarize concisely what was done to achieve the goal and the result. Reply markdown."
    return f"""{opening}
GOAL: {goal}
CONTEXT:
{context}"""


def output_summary_prompt(command: str, output: str) -> str:
    return f"""Summarize this command output, keeping errors, warnings, file paths, counts and the final status. Be concise.
COMMAND: {command}
OUTPUT:
{output}"""
