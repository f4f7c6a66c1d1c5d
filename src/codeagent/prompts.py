"""System prompt assembly."""

from typing import Any, Dict, Optional

from .models import ContextBundle
from .request import RequestAnalysis

RESPONSE_FORMAT = """RESPONSE FORMAT (JSON):
{
  "analysis": "Brief analysis of the request",
  "actions": [
    {
      "type": "create_file|edit_file|delete_file|create_folder",
      "path": "relative/path/to/file",
      "content": "full file content (create_file and edit_file only)",
      "reason": "why this action is needed",
      "dependencies": ["files this action depends on"]
    }
  ],
  "explanation": "Detailed explanation of changes"
}"""

RULES = """RULES:
1. Return a single valid JSON object and nothing else.
2. Always provide complete, functional file content; edit_file replaces the whole file.
3. Paths are relative to the workspace root and must stay inside it.
4. Follow existing project patterns, naming and import conventions.
5. For follow-up requests, make incremental changes and preserve existing functionality.
6. Escape every quote and newline inside JSON strings.
7. Avoid extremely large content fields; split work into several actions when needed."""

SOURCE_EXTENSIONS = {
    'typescript': '.ts, .tsx',
    'javascript': '.js, .jsx',
    'python': '.py',
}


def _project_section(project: Dict[str, Any]) -> str:
    language = project.get("preferred_language", "javascript")
    stack = [language.capitalize()]
    for flag, label in (("is_react", "React"), ("is_vue", "Vue"), ("is_angular", "Angular")):
        if project.get(flag):
            stack.append(label)
    return (
        "PROJECT:\n"
        f"- Preferred Language: {language}\n"
        f"- Project Type: {' + '.join(stack)}\n"
        f"- Source Extensions: {SOURCE_EXTENSIONS.get(language, '.js, .jsx')}"
    )


def _session_section(session_context: Optional[Dict[str, Any]]) -> str:
    if not session_context:
        return ""
    summary = session_context.get("summary") or "No summary available"
    if session_context["type"] == "follow_up":
        files = ", ".join(session_context.get("last_files_modified") or []) or "none"
        return (
            "SESSION CONTEXT (FOLLOW-UP REQUEST):\n"
            f"- Previous Request: \"{session_context.get('last_request') or 'No previous request'}\"\n"
            f"- Recently Modified Files: {files}\n"
            f"- Session Summary: {summary}\n"
            "Work with the CURRENT state of the recently modified files and make incremental changes."
        )
    return f"SESSION CONTEXT (NEW REQUEST):\n- Session Summary: {summary}"


def _code_section(context: ContextBundle) -> str:
    blocks = []
    for result in context.relevant_chunks:
        chunk = result.chunk
        blocks.append(f"// {chunk.file_path} (lines {chunk.start_line}-{chunk.end_line})\n{chunk.text}")
    return "\n\n---\n\n".join(blocks) or "(no relevant code found)"


def _dependency_section(context: ContextBundle) -> str:
    lines = []
    for record in context.dependencies:
        lines.append(
            f"{record.path}: Imports({len(record.imports)}) Exports({len(record.exports)}) "
            f"Functions({len(record.functions)}) Classes({len(record.classes)})"
        )
        if record.references:
            lines.append(f"  references: {', '.join(record.references)}")
        if record.used_by:
            lines.append(f"  used by: {', '.join(record.used_by)}")
    return "\n".join(lines) or "(none)"


def build_system_prompt(
    analysis: RequestAnalysis,
    context: ContextBundle,
    session_context: Optional[Dict[str, Any]] = None,
    project: Optional[Dict[str, Any]] = None,
) -> str:
    """Compose the instructions, retrieved code and response contract sent to the model."""
    sections = [
        "You are an AI coding agent working inside a user's workspace.",
        "CURRENT CONTEXT:\n"
        f"- Intent: {analysis.intent}\n"
        f"- Complexity: {analysis.complexity}\n"
        f"- File Operations: {', '.join(analysis.file_operations) or 'none'}\n"
        f"- Current File: {analysis.current_file or 'None'}\n"
        f"- Session Type: {context.session_type}",
    ]
    session = _session_section(session_context)
    if session:
        sections.append(session)
    sections.append(_project_section(project or {}))
    sections.append("RELEVANT CODE CONTEXT:\n" + _code_section(context))
    sections.append("DEPENDENCY INFORMATION:\n" + _dependency_section(context))
    sections.append(
        "PROJECT STATISTICS:\n"
        f"- Total Files: {context.total_files}\n"
        f"- Total Chunks: {context.total_chunks}\n"
        f"- Relevant Files: {len(context.relevant_files)}"
    )
    sections.append(RESPONSE_FORMAT)
    sections.append(RULES)
    return "\n\n".join(sections)


def build_user_prompt(request: str, current_file: Optional[Dict[str, str]] = None) -> str:
    if not current_file:
        return request
    return (
        f"{request}\n\n"
        f"Currently open file: {current_file.get('path', '')}\n"
        f"```\n{current_file.get('content', '')}\n```"
    )
