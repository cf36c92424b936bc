"""Build prompts for row research, JSON repair, aggregation and voice summary."""

from __future__ import annotations

from row_research.models.completion import Message

STRICT_JSON_SYSTEM_PROMPT = """You are a research assistant that ONLY outputs valid JSON.
CRITICAL RULES:
1. Output ONLY a JSON object - no markdown, no explanations, no prose
2. Do not wrap JSON in code fences (```)
3. Do not add any text before or after the JSON
4. Ensure all strings are properly escaped
5. Use double quotes for all keys and string values

Your response must be parseable by a JSON parser without any preprocessing."""

RESEARCH_OUTPUT_FORMAT = """{
  "summary": "A concise 2-3 sentence summary of the research findings",
  "details": {
    "key_findings": ["finding 1", "finding 2"],
    "relevant_data": {}
  },
  "sources": ["source1.com", "source2.com"],
  "confidence": 0.85
}"""

REPAIR_EXCERPT_CHARS = 500


class PromptBuilder:
    def build_research_messages(self, query: str, row_data: dict[str, str]) -> tuple[Message, ...]:
        """One user message describing the entity and the required output format."""
        entity_info = "\n".join(f"{key}: {value}" for key, value in row_data.items())

        parts = []
        parts.append(f'Research the following entity based on this query: "{query}"')
        parts.append("")
        parts.append("Entity Information:")
        parts.append(entity_info)
        parts.append("")
        parts.append("Respond with a JSON object in this exact format:")
        parts.append(RESEARCH_OUTPUT_FORMAT)
        parts.append("")
        parts.append(
            "The confidence score should be between 0 and 1 based on how reliable the information is."
        )
        parts.append("Remember: Output ONLY the JSON object, nothing else.")

        return (Message(role="user", content="\n".join(parts)),)

    def build_repair_prompt(self, original_query: str, malformed_response: str) -> str:
        excerpt = malformed_response[:REPAIR_EXCERPT_CHARS]
        if len(malformed_response) > REPAIR_EXCERPT_CHARS:
            excerpt += "..."

        return f"""The previous response was not valid JSON. Here was the malformed response:

{excerpt}

Please provide ONLY a valid JSON object with no additional text.
Original request: {original_query}

Remember: Output ONLY the JSON object, nothing else."""

    def build_aggregation_prompt(self, summaries: list[str], original_query: str) -> str:
        numbered = "\n\n".join(f"{i}. {s}" for i, s in enumerate(summaries, start=1))

        return f"""You are aggregating research summaries. The original query was: "{original_query}"

Here are the individual research summaries:

{numbered}

Create a cohesive 3-5 sentence summary that:
1. Captures the key themes and patterns across all results
2. Highlights the most important findings
3. Notes any significant differences or outliers
4. Provides actionable insights

Keep your response concise and directly useful. Do not use bullet points, write in flowing prose."""

    def build_voice_prompt(self, aggregated_summary: str, entity_count: int) -> str:
        return f"""Convert this research summary into a natural, conversational response suitable for voice output (text-to-speech).

Summary: {aggregated_summary}

Requirements:
1. Start with a brief acknowledgment like "I've researched {entity_count} items for you."
2. Use natural speech patterns and transitions
3. Avoid technical jargon and abbreviations
4. Keep it under 100 words
5. End with a closing like "Is there anything specific you'd like me to elaborate on?"

Write ONLY the voice response, nothing else."""
