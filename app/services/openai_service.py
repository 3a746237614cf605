"""OpenAI LLM service for embeddings and quiz generation."""
import json
import logging
import re
from typing import List, Dict, Optional
import openai
from openai import AsyncOpenAI
from app.core.config import settings
from app.core.errors import TransientProviderError


logger = logging.getLogger(__name__)

MIN_OPTIONS = 2
MAX_OPTIONS = 6


class OpenAIService:
    """Service for interacting with OpenAI API."""

    def __init__(self, client: Optional[AsyncOpenAI] = None):
        """Initialize OpenAI client with API key from settings."""
        self.client = client or AsyncOpenAI(
            api_key=settings.OPENAI_API_KEY,
            timeout=settings.OPENAI_TIMEOUT_SECONDS,
            max_retries=settings.OPENAI_MAX_RETRIES,
        )
        self.model = settings.OPENAI_MODEL
        self.embedding_model = settings.EMBEDDING_MODEL

    async def embed(self, text: str) -> List[float]:
        vectors = await self.embed_many([text])
        return vectors[0]

    async def embed_many(self, texts: List[str]) -> List[List[float]]:
        """
        Embed a batch of texts in one request.

        The provider returns items tagged with their input index; they are
        re-ordered so the output lines up with ``texts``.
        """
        if not texts:
            return []

        # The embeddings endpoint rejects empty strings
        inputs = [text if text and text.strip() else " " for text in texts]
        try:
            response = await self.client.embeddings.create(input=inputs, model=self.embedding_model)
        except openai.APITimeoutError as e:
            raise TransientProviderError(f"Embedding request timed out: {str(e)}", is_timeout=True)
        except openai.APIError as e:
            raise TransientProviderError(f"Embedding request failed: {str(e)}")

        data = sorted(response.data, key=lambda item: item.index)
        if len(data) != len(inputs):
            raise TransientProviderError(
                f"Embedding response carried {len(data)} vectors for {len(inputs)} inputs"
            )
        return [list(item.embedding) for item in data]

    async def complete_structured(self, system_prompt: str, user_prompt: str, max_tokens: int = 4000) -> Dict:
        """Run a chat completion that must answer with a JSON object."""
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt}
                ],
                temperature=0.7,
                max_tokens=max_tokens,
                response_format={"type": "json_object"}
            )
        except openai.APITimeoutError as e:
            raise TransientProviderError(f"OpenAI request timed out: {str(e)}", is_timeout=True)
        except openai.APIError as e:
            raise TransientProviderError(f"Error calling OpenAI: {str(e)}")

        content = response.choices[0].message.content or ""
        return self._parse_json(content)

    async def generate_quiz_questions(
        self,
        chunks_content: List[Dict[str, str]],
        num_questions: int,
        document_title: Optional[str] = None,
    ) -> List[Dict]:
        """
        Generate multiple-choice questions from document chunks.

        Args:
            chunks_content: List of chunk dictionaries with 'text' and 'page_number'
            num_questions: Number of questions to ask for
            document_title: Title used to frame the prompt

        Returns:
            List of question dictionaries with structure:
            {
                "question": str,
                "options": List[str] (2 to 6 entries),
                "correct_answer": int  # index into options
            }

        Raises:
            TransientProviderError: The call failed or produced no usable question
        """
        context = self._prepare_context(chunks_content)
        system_prompt = self._build_system_prompt()
        user_prompt = self._build_user_prompt(
            context=context,
            num_questions=num_questions,
            document_title=document_title,
        )

        # Roughly 150 tokens per question plus headroom
        max_tokens = min(16000, 500 + num_questions * 150)
        result = await self.complete_structured(system_prompt, user_prompt, max_tokens=max_tokens)

        questions = []
        for raw in result.get("questions", []) or []:
            question = self._validate_question(raw)
            if question is None:
                logger.warning("Dropping malformed quiz item: %s", str(raw)[:200])
                continue
            questions.append(question)

        if not questions:
            raise TransientProviderError("No valid questions generated")
        return questions

    async def generate_abstract(self, texts: List[str], document_title: Optional[str] = None) -> Optional[str]:
        """
        Write a roughly 100-word abstract from the leading chunks of a document.

        Returns None when the model answers with nothing.

        Raises:
            TransientProviderError: The call failed
        """
        texts = texts[:settings.ABSTRACT_MAX_CHUNKS]
        combined = "\n\n".join(texts)
        if len(combined) > settings.ABSTRACT_MAX_CHARS:
            combined = combined[:settings.ABSTRACT_MAX_CHARS] + "..."

        title = f' titled "{document_title}"' if document_title else ""
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "system",
                        "content": "You write concise, informative abstracts of documents. "
                                   "Capture the key themes, purpose and scope in about 100 words."
                    },
                    {
                        "role": "user",
                        "content": f"Write a 100-word abstract for a document{title} based on this content:\n\n"
                                   f"{combined}\n\nReturn only the abstract text."
                    }
                ],
                temperature=0.7,
                max_tokens=200
            )
        except openai.APITimeoutError as e:
            raise TransientProviderError(f"Abstract request timed out: {str(e)}", is_timeout=True)
        except openai.APIError as e:
            raise TransientProviderError(f"Abstract request failed: {str(e)}")

        abstract = (response.choices[0].message.content or "").strip()
        return abstract or None

    def _parse_json(self, content: str) -> Dict:
        try:
            return json.loads(content)
        except json.JSONDecodeError:
            match = re.search(r"\{.*\}", content, re.DOTALL)
            if match:
                try:
                    return json.loads(match.group(0))
                except json.JSONDecodeError:
                    pass
        raise TransientProviderError("Invalid JSON response from OpenAI")

    def _validate_question(self, raw) -> Optional[Dict]:
        if not isinstance(raw, dict):
            return None
        question = raw.get("question") or raw.get("question_text")
        options = raw.get("options")
        answer = raw.get("correct_answer", raw.get("correctAnswer"))

        if not isinstance(question, str) or not question.strip():
            return None
        if not isinstance(options, list) or not MIN_OPTIONS <= len(options) <= MAX_OPTIONS:
            return None
        if not all(isinstance(opt, str) and opt.strip() for opt in options):
            return None

        # Accept a letter (A-F) as well as an index
        if isinstance(answer, str):
            letter = answer.strip().upper()
            if len(letter) == 1 and "A" <= letter <= "F":
                answer = ord(letter) - ord("A")
            elif letter.isdigit():
                answer = int(letter)
        if isinstance(answer, bool) or not isinstance(answer, int):
            return None
        if not 0 <= answer < len(options):
            return None

        return {
            "question": question.strip(),
            "options": [opt.strip() for opt in options],
            "correct_answer": answer,
        }

    def _prepare_context(self, chunks_content: List[Dict[str, str]]) -> str:
        """Prepare context string from chunks."""
        context_parts = []

        for idx, chunk in enumerate(chunks_content):
            text = chunk.get('text', '')
            page = chunk.get('page_number') or 'Unknown'

            context_parts.append(
                f"[Chunk {idx}] (Page: {page})\n{text}\n"
            )

        return "\n---\n".join(context_parts)

    def _build_system_prompt(self) -> str:
        """Build the system prompt for quiz generation."""
        return f"""You are an expert quiz creator for educational content.
Your task is to generate high-quality multiple-choice questions based on provided document chunks.

Guidelines:
- Questions must be clear, unambiguous, and directly answerable from the content
- Provide between {MIN_OPTIONS} and {MAX_OPTIONS} options (usually 4) with exactly one correct answer
- Do not repeat questions
- Ensure questions test understanding, not just memorization
- Return ONLY valid JSON in the specified format

Output format:
{{
  "questions": [
    {{
      "question": "The question text",
      "options": ["Option A text", "Option B text", "Option C text", "Option D text"],
      "correct_answer": 0
    }}
  ]
}}"""

    def _build_user_prompt(
        self,
        context: str,
        num_questions: int,
        document_title: Optional[str],
    ) -> str:
        """Build the user prompt with context and requirements."""
        title = f' titled "{document_title}"' if document_title else ""
        return f"""Based on the following content from a document{title}, generate {num_questions} multiple-choice questions.

CONTENT:
{context}

REQUIREMENTS:
- Generate exactly {num_questions} questions
- Each question must include:
  * question (clear and specific)
  * options (array of answer options)
  * correct_answer (0-based index of the correct option)

Return your response as valid JSON following the specified format."""


_llm_service: Optional[OpenAIService] = None


def get_llm() -> OpenAIService:
    """Shared OpenAI service, created on first use."""
    global _llm_service
    if _llm_service is None:
        _llm_service = OpenAIService()
    return _llm_service
