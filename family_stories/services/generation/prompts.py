"""Prompt templates for narrative, image and book generation."""
from typing import List, Optional

from family_stories.services.stories.models import Category, Story, StoryPreferences

NO_PREVIOUS_SUMMARY = "No previous summary"


def _preferences_block(preferences: StoryPreferences, user_name: str) -> str:
    return f"""Narrative Preferences:
- Narrative Style: {preferences.narrative_style}
  • first-person: Stories written from the speaker's perspective ("I remember...")
  • third-person: Stories written from {user_name}'s perspective ("{user_name} remembers...")
- Length Preference: {preferences.length_preference}
  • longer: Comprehensive, detailed stories
  • balanced: Moderate length with key details
  • shorter: Concise, focused stories
- Detail Richness: {preferences.detail_richness}
  • more: Rich, descriptive narratives with sensory details
  • balanced: Mix of events and descriptive elements
  • fewer: Focus on key events and minimal description"""


def get_story_update_prompt(
    story: Story,
    category: Category,
    preferences: StoryPreferences,
    transcript: str,
    onboarding_summary: Optional[str] = None,
    user_name: Optional[str] = None,
) -> str:
    """System prompt asking for the merged summary/text of a story as JSON."""
    name = user_name or "the storyteller"
    return f"""You are an AI assistant helping to analyze and summarize conversations about family stories and memories.

Category Context: {category.title} - {category.description}
Initial Question: {story.initial_question or ""}
Onboarding Call Summary: {onboarding_summary or "No onboarding summary"}
Previous Summary: {story.story_summary or NO_PREVIOUS_SUMMARY}

{_preferences_block(preferences, name)}

Based on the transcript of the conversation and the narrative preferences above, generate a JSON response with the following fields:

- storySummary: A concise summary of all conversations so far
- storyText: A well-formatted narrative combining all the stories shared, following the specified narrative style, length, and detail richness
- title: A one-line title (only if current title is null)
- description: A 40-50 word description (only if current description is null)

Current title: {story.title if story.title is not None else "null"}
Current description: {story.description if story.description is not None else "null"}

Current Transcript:
{transcript}"""


def get_story_image_prompt(story_summary: Optional[str], category: Category) -> str:
    return f"""Create a high-quality, nostalgic image that visually represents this family story:

**Story Summary:** {story_summary or ""}

**Category:** {category.title}

**Style Guidelines:**
- Warm, emotional, and inviting atmosphere
- Suitable for a family memory book
- Photorealistic or high-quality illustration style
- Soft lighting and warm color tones
- Include subtle nostalgic elements
- Focus on emotional connection rather than literal representation

Avoid clichés and create a unique, meaningful image that captures the essence of the story."""


def get_cover_image_prompt(cover_description: str) -> str:
    return (
        f"Create a nostalgic, emotional image of the book that represents this family story: "
        f"{cover_description}. Make it warm, inviting, and suitable for a family memory book."
    )


def get_book_index_prompt(stories: List[Story]) -> str:
    story_lines = "\n".join(
        f"""
Story {index + 1}:
Question: {story.initial_question or ""}
Text: {story.story_text or ""}
"""
        for index, story in enumerate(stories)
    )
    return f"""Create a book index from the following stories. Each story has an initial question and story text. Generate a cohesive structure with chapters and a suggested book title. Format the response as JSON with the following structure:
{{
  "title": "Book title",
  "coverDescription": "Description for cover image generation",
  "chapters": [
    {{
      "number": 1,
      "title": "Chapter title",
      "storyIndex": 0
    }}
  ]
}}

storyIndex is the zero-based index of the story in the list below.

Stories:
{story_lines}"""


def get_book_chapter_prompt(
    story: Story,
    chapter_title: str,
    chapters_so_far: str,
    preferences: StoryPreferences,
) -> str:
    return f"""We are creating a cohesive book of multiple chapters.
So far, these story summaries (NOT full text) have been covered:
{chapters_so_far or "(none yet)"}

Now, generate the next chapter with the title: "{chapter_title}" based on this new story:
Question: {story.initial_question or ""}
Story Text: {story.story_text or ""}

{_preferences_block(preferences, "the storyteller")}

IMPORTANT REQUIREMENTS:
1. Do NOT include any automatic chapter numbering (e.g., "Chapter One," "Chapter Seven").
2. Do NOT use the word "Chapter" at all.
3. Write a cohesive, engaging narrative that can logically follow from the previous stories' *summaries*.
4. Return only the text of the new chapter with no extra headings or metadata."""


def get_upcoming_questions_prompt(summaries: List[str], count: int = 5) -> str:
    joined = "\n".join(f"- {summary}" for summary in summaries) or "- (no stories yet)"
    return f"""You help a family memory interviewer decide what to ask next.
These are summaries of the stories the person has already told:
{joined}

Suggest {count} warm, open-ended questions that would draw out new memories without repeating what is already covered.
Respond in JSON: {{"questions": ["...", "..."]}}"""
