"""Fixed instruction text embedded in generated tasks."""

from __future__ import annotations

GIT_OPERATIONS_NOTE = (
    "\n\nIMPORTANT: Do NOT commit or push changes. The system will handle all git "
    "operations (staging, committing, and pushing) automatically."
)


def _diff_command(diff_point: str) -> str:
    return f'gh pr diff {diff_point} | grep "^diff --git"'


def code_review_prompt(diff_point: str) -> str:
    return f"""
Your task is to:
1. Read the Pull Request diff by using `{_diff_command(diff_point)}`. Do not write the diff to file.
2. Review the diff against the criteria below.
3. Post each specific finding as an inline review comment if the tool for it is available.
4. Submit your overall review as a bullet point list.

Additional instructions:
1. Review ONLY the changed lines, prioritizing adherence to the repository's style and avoiding overcomplication.
2. You may open files or search the project for context. Do NOT run tests, build, or modify anything.
3. Do NOT create files, commit, or push. This is a read-only review.

### Core Review Areas

1. **Adherence with this repository's style and guidelines**
   - Naming, formatting and package structure consistent with existing code.
   - Reuse of existing utilities and patterns; no new dependencies without need.

2. **Avoiding overcomplication**
   - No new abstractions, premature generalization or needless indirection.
   - No changes to unrelated files and no duplicated logic.

### If obviously applicable to the CHANGED lines only
- Security: unsafe input handling, command execution or data exposure.
- Performance: needless allocations or heavy work introduced by the change.
- Error handling: swallowed exceptions or departures from existing patterns.

### Output Format
- Submit the overall review as a bullet list ONLY, one finding per line: - `File.ts:Line: Comment`.
- Comment only on what this diff changes; never on pre-existing code.
- Keep each comment to 15-25 words. No praise, questions or speculation.
- If no feedback is warranted, submit `LGTM` only.
- For small changes at most 3 comments; medium 6-8; large 8-12.
"""


def fix_ci_prompt(diff_point: str) -> str:
    return f"""
Your task is to analyze CI failures and suggest fixes WITHOUT implementing them.

### Steps to follow
1. Gather information
   - Retrieve the failed CI checks for this Pull Request.
   - Read the Pull Request diff by using `{_diff_command(diff_point)}`. Do not write the diff to file.

2. If NO failed checks were found, submit ONLY:
   ---
   ## CI Status

   No failed checks found for this PR. All CI checks have passed or are still running.
   ---

3. Otherwise, for each failure:
   - Explore the relevant source files. Do NOT run tests, build, or modify the codebase.
   - Identify the failing step and error message, and the root cause.
   - Decide whether the failure is related to the PR diff or pre-existing.

4. Submit your analysis using EXACTLY this format:

---
## CI Failure Analysis

**Failed Check:** [check name]
**Failed Step:** [step name if identifiable]
**Error Type:** [test failure / build error / lint error / timeout / other]

### Error Details
```
[relevant error message, kept short]
```

### Root Cause
[1-3 sentences]

### Correlation with PR Changes
[which changes likely caused it, or why it looks unrelated]

## Suggested Fix

### Files to modify
- `File.ts:Line:`: [what needs to change and why]
---
"""


def minor_fix_prompt(diff_point: str, user_request: str | None = None) -> str:
    request_section = ""
    focus_note = ""
    if user_request:
        request_section = (
            f'\n### User Request\nThe user has specifically requested: "{user_request}"\n'
            "Focus on addressing this request while following all the guidelines below.\n"
        )
        focus_note = (
            f'\n   - Work out what "{user_request}" means for this PR and find the code it concerns.'
        )
    return f"""
Your task is to make a minor fix to this Pull Request based on the user's request.
{request_section}
### Steps to follow
1. Gather information
   - Read the Pull Request diff by using `{_diff_command(diff_point)}`. Do not write the diff to file.
   - Understand what the PR is trying to accomplish.{focus_note}

2. Implement the fix
   - Keep changes minimal and focused on the request.
   - Follow the existing code style. Make no unrelated changes.

3. Validate
   - Make sure the change builds and relevant tests still pass.

### Output
Submit a brief summary of the changes you made and why they address the request.
"""
