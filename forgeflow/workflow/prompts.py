"""Prompts for template customization and build-error fixing."""

from forgeflow.recovery.classifier import ParsedError

GENERATION_SYSTEM_PROMPT = (
    "You are an expert React/TypeScript developer customizing a starter template. "
    "Return only complete file contents, never explanations or markdown."
)

FIX_SYSTEM_PROMPT = (
    "You are a TypeScript/React code fixer. Return only the raw fixed file, "
    "with no markdown code blocks and no explanations."
)


def generation_prompt(
    path: str,
    purpose: str,
    template_content: str,
    requirements: str,
    project_name: str | None = None,
) -> str:
    project_line = f"PROJECT NAME: {project_name}\n" if project_name else ""
    return f"""Create a customized version of this file based on the user requirements.

FILE: {path}
PURPOSE: {purpose}

ORIGINAL TEMPLATE:
```
{template_content}
```

USER REQUIREMENTS: {requirements}
{project_line}
INSTRUCTIONS:
1. Customize the file content to match the user requirements
2. Keep the same structure and component patterns
3. Update text, branding, and functionality to fit the business domain
4. Maintain all existing imports and exports
5. Ensure TypeScript compatibility
6. Return ONLY the complete file content

Generate the customized file content:"""


def fix_prompt(path: str, current_content: str, errors: list[ParsedError]) -> str:
    error_lines = "\n".join(f"- Line {e.line}: {e.message} ({e.code})" for e in errors)
    return f"""Fix the following errors in this file.

FILE: {path}
CURRENT CONTENT:
```
{current_content}
```

ERRORS TO FIX:
{error_lines}

INSTRUCTIONS:
1. For TS6133 errors (unused variables/imports): remove the unused imports or variables
2. For syntax errors (TS1005, TS1434, TS1443, ...): fix the syntax carefully
3. For other TypeScript errors: fix the types while preserving functionality
4. Do not change the overall structure or behaviour of the code
5. Preserve every import that is actually used and keep the existing formatting

Return the complete fixed file content as raw code:"""
