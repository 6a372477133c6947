# FILE: codeagent/tools/schemas.py
"""
Tool input schemas (v1) for the built-in workspace tools.

These are lightweight JSONSchema-like dicts used for basic validation inside
ToolExecutor and advertised to the model as tool parameters.
No external jsonschema dependency.
"""

from __future__ import annotations

# -------------------------
# read_file v1
# -------------------------

READ_FILE_INPUT_V1 = {
    "type": "object",
    "required": ["file_path"],
    "properties": {
        "file_path": {"type": "string", "minLength": 1, "maxLength": 1024},
        "offset": {"type": "integer", "minimum": 0},
        "limit": {"type": "integer", "minimum": 1, "maximum": 5000},
    },
}

# -------------------------
# write_file v1
# -------------------------

WRITE_FILE_INPUT_V1 = {
    "type": "object",
    "required": ["file_path", "content"],
    "properties": {
        "file_path": {"type": "string", "minLength": 1, "maxLength": 1024},
        "content": {"type": "string"},
    },
}

# -------------------------
# edit v1
# -------------------------

EDIT_INPUT_V1 = {
    "type": "object",
    "required": ["file_path", "old_string", "new_string"],
    "properties": {
        "file_path": {"type": "string", "minLength": 1, "maxLength": 1024},
        "old_string": {"type": "string"},
        "new_string": {"type": "string"},
        "replace_all": {"type": "boolean"},
    },
}

# -------------------------
# list_directory v1
# -------------------------

LIST_DIRECTORY_INPUT_V1 = {
    "type": "object",
    "properties": {
        "path": {"type": "string", "maxLength": 1024},
    },
}

# -------------------------
# shell v1
# -------------------------

SHELL_INPUT_V1 = {
    "type": "object",
    "required": ["command"],
    "properties": {
        "command": {"type": "string", "minLength": 1, "maxLength": 4000},
        "timeout_s": {"type": "number", "minimum": 1, "maximum": 600},
    },
}

# -------------------------
# write_todos v1
# -------------------------

WRITE_TODOS_INPUT_V1 = {
    "type": "object",
    "required": ["todos"],
    "properties": {
        "todos": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["description"],
                "properties": {
                    "description": {"type": "string", "minLength": 1},
                    "status": {"type": "string", "enum": ["pending", "in_progress", "completed", "cancelled"]},
                },
            },
        },
    },
}
