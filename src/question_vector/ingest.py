"""
Question Bank Loader

Reads ``*_questions.json`` files from a question bank directory and turns
them into ingest items of the form ``{"id", "content", "metadata"}`` for
``VectorService.index_batch``.

Accepted file shapes: a bare list of questions, or an object holding the list
under ``questions`` or ``data``. The grade and question type are taken from
the file name (``grade8_linear_equations_questions.json``) when the question
itself does not carry them.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List

logger = logging.getLogger("qv.ingest")

QUESTION_FILE_SUFFIX = "_questions.json"

_GRADE_RE = re.compile(r"grade(\d+)")
_TYPE_RE = re.compile(r"grade\d+_(.+)_questions\.json$")


def find_question_files(root: Path) -> List[Path]:
    """Return every question file under ``root``, sorted for stable ingest order."""
    return sorted(path for path in root.rglob(f"*{QUESTION_FILE_SUFFIX}") if path.is_file())


def _extract_questions(data: Any) -> List[Dict[str, Any]]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("questions", "data"):
            if isinstance(data.get(key), list):
                return data[key]
    return []


def load_question_file(path: Path) -> List[Dict[str, Any]]:
    """
    Parse one question file into ingest items.

    Questions with no text are skipped. Ids default to
    ``<type>-<grade>-<nnn>`` by position in the file.

    Raises
    ------
    ValueError
        If the file is not valid JSON.
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    questions = _extract_questions(data)
    if not questions:
        logger.warning("No questions found in %s", path.name)
        return []

    grade_match = _GRADE_RE.search(path.name)
    type_match = _TYPE_RE.search(path.name)
    grade = int(grade_match.group(1)) if grade_match else None
    question_type = type_match.group(1).lower() if type_match else "general"

    topic_default = data.get("curriculumTopic") if isinstance(data, dict) else None

    items: List[Dict[str, Any]] = []
    for position, question in enumerate(questions, start=1):
        text = (question.get("question") or question.get("prompt") or "").strip()
        if not text:
            continue

        metadata = {
            "difficulty": question.get("difficulty", "medium"),
            "topic": question.get("curriculumTopic") or topic_default or question_type,
            "type": question_type,
        }
        if grade is not None:
            metadata["grade"] = question.get("grade", grade)
        answer = question.get("answer") or question.get("solution")
        if answer is not None:
            metadata["answer"] = answer

        items.append(
            {
                "id": str(question.get("id") or f"{question_type}-{grade or 0}-{position:03d}"),
                "content": text,
                "metadata": metadata,
            }
        )

    return items
