"""Prompt templates for the AI oracle."""

from typing import Sequence

SCORING_CRITERIA = ("interest_level", "local_relevance", "community_impact")


def score_prompt(title: str, body: str) -> str:
    return f"""You are rating a candidate story for a daily local newsletter serving St. Cloud, Minnesota.

Rate the story on each criterion from 0 to 10:
- interest_level: how interesting the story is to a general local reader
- local_relevance: how directly it concerns St. Cloud and the surrounding area
- community_impact: how much it affects residents' daily lives

Title: {title}
Content: {body[:2000]}

Respond with JSON only:
{{"interest_level": <0-10>, "local_relevance": <0-10>, "community_impact": <0-10>, "reasoning": "<one sentence>"}}"""


def dedupe_prompt(items: Sequence[str]) -> str:
    listing = "\n".join(f"{index}. {text}" for index, text in enumerate(items))
    return f"""The following numbered stories were collected for the same newsletter issue.
Group together stories that cover the same real-world event or topic.

{listing}

Only report groups with two or more stories. Use the numbers shown above.
Respond with JSON only:
{{"groups": [{{"topic_signature": "<short topic>", "primary_article_index": <n>, "duplicate_indices": [<n>, ...]}}]}}
If there are no duplicates respond with {{"groups": []}}"""


def rewrite_prompt(title: str, body: str) -> str:
    return f"""Rewrite this story for a friendly, factual local newsletter.

Original title: {title}
Original content: {body[:4000]}

Requirements:
- A new headline of at most 12 words
- 60 to 120 words of body text in complete sentences
- Use only facts stated in the original; add nothing
- No questions to the reader, no emojis

Respond with JSON only:
{{"headline": "<headline>", "content": "<body>", "word_count": <number>}}"""


def fact_check_prompt(headline: str, content: str, original: str) -> str:
    return f"""Compare the newsletter copy against the original source text.

Newsletter headline: {headline}
Newsletter content: {content}

Original source: {original[:4000]}

Score each component from 0 to 10:
- factual_accuracy: every stated fact appears in the source
- context_preservation: the copy keeps the meaning and context of the source
- no_misleading_claims: nothing is exaggerated or implied beyond the source

Respond with JSON only:
{{"factual_accuracy": <0-10>, "context_preservation": <0-10>, "no_misleading_claims": <0-10>, "details": "<short explanation>"}}"""


def event_summary_prompt(title: str, description: str, venue: str = "") -> str:
    return f"""Write a natural highlight of this local event in at most 50 words.

Event: {title}
Venue: {venue or "Not specified"}
Description: {description[:2000]}

Use only details from the description. Respond with JSON only:
{{"event_summary": "<summary>", "word_count": <number>}}"""


def subject_line_prompt(headline: str, content: str, max_length: int) -> str:
    return f"""Write an email subject line for today's local newsletter based on its top story.

Headline: {headline}
Story: {content[:1000]}

Requirements:
- At most {max_length} characters including spaces
- No emojis, no quotation marks, no trailing punctuation
- Intriguing but accurate

Respond with the subject line only."""
