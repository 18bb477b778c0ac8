"""
Prompt templates for the summary and article stages.
"""

SUMMARY_SYSTEM = (
    "You summarize transcripts of recorded talks, meetings and videos. "
    "Write in the language of the transcript. Never invent content that is not in it."
)

SUMMARY_PROMPT = """\
Summarize the transcript below.
List the important points as bullet points, then describe the whole content
in a short paragraph. Keep the essence of the original.
If the transcript was truncated, summarize only what is present.

Transcript:
{transcript}
"""

ARTICLE_SYSTEM = (
    "You are an editor who turns summaries of recorded media into readable articles. "
    "Write in the language of the summary."
)

ARTICLE_PROMPT = """\
Write an article in Markdown based on the summary below.
Start with a title as a level-1 heading, follow with a short introduction,
then sections with level-2 headings, and end with a conclusion.
Do not add facts that are not supported by the material.

Summary:
{summary}
"""

ARTICLE_TRANSCRIPT_SECTION = """
Full transcript, for quotes and details:
{transcript}
"""


def summary_prompt(transcript: str) -> str:
    return SUMMARY_PROMPT.format(transcript=transcript)


def article_prompt(summary: str, transcript: str | None = None) -> str:
    prompt = ARTICLE_PROMPT.format(summary=summary)
    if transcript:
        prompt += ARTICLE_TRANSCRIPT_SECTION.format(transcript=transcript)
    return prompt
