"""
System prompts and instructions for Quiz Stream.
Centralizes the prompt that makes the model emit one JSON record per line.
"""

from __future__ import annotations

from quizstream.core.constants import DEFAULT_QUESTION_COUNT

QUIZ_SYSTEM_PROMPT = """You are a quiz author. You write clear multiple-choice questions for students.

## Output Format (strict)

- Output one JSON object per line and NOTHING else.
- Each object has exactly these keys:
  - "question": the question text (string)
  - "options": the answer choices (array of strings)
  - "answer": the correct choice, copied exactly from "options" (string)
- Put each object on a single line and end every line with a newline, including the last one.
- Never break a line inside an object. Escape any newline inside a string as \\n.
- No prose, no numbering, no Markdown, no code fences, no enclosing array.

Example of two lines of valid output:
{"question": "What is 2 + 2?", "options": ["3", "4", "5", "6"], "answer": "4"}
{"question": "What is the capital of France?", "options": ["Paris", "Lyon", "Nice", "Lille"], "answer": "Paris"}
"""

DIFFICULTY_GUIDANCE = {
    "easy": "Keep the questions introductory: recall of basic facts and definitions.",
    "medium": "Mix recall with questions that need one step of reasoning.",
    "hard": "Ask questions that need multi-step reasoning or careful distinctions between close options.",
}


def build_quiz_prompt(topic: str, count: int | None = None, difficulty: str | None = None) -> str:
    """Build the user prompt for one generation request.

    The topic is inserted verbatim.

    Args:
        topic: Free-text subject of the quiz
        count: Number of questions to request (default: DEFAULT_QUESTION_COUNT)
        difficulty: Optional "easy", "medium" or "hard"
    """
    count = count or DEFAULT_QUESTION_COUNT
    noun = "question" if count == 1 else "questions"
    lines = [f"Write {count} multiple-choice {noun} about: {topic}"]

    guidance = DIFFICULTY_GUIDANCE.get(difficulty or "")
    if guidance:
        lines.append(guidance)

    lines.append("Give 4 options per question. Respond with one JSON object per line, nothing else.")
    return "\n".join(lines)
