"""Chat page using Streamlit."""

import asyncio
from collections.abc import Coroutine, Iterator
from typing import Any, TypeVar

import streamlit as st

from faqbot import ChatbotPipeline, LLMChainError, TextStream, load_faqs
from faqbot.config import config

T = TypeVar("T")

GENERIC_FAILURE_MESSAGE = (
    "Sorry, I couldn't generate a response right now. Please try again in a moment."
)

config.setup_logging()
logger = config.get_logger(__name__)


class SessionState:
    """Centralized session state management."""

    @staticmethod
    def initialize() -> None:
        """Initialize all session state variables."""
        defaults = {
            "pipeline": None,
            "event_loop": None,
            "messages": [],
        }

        for key, default_value in defaults.items():
            if key not in st.session_state:
                st.session_state[key] = default_value

    @staticmethod
    def reset_conversation() -> None:
        """Forget the visitor's conversation."""
        st.session_state.messages = []

    @staticmethod
    def is_system_ready() -> bool:
        """Check if the pipeline is initialized.

        Returns:
            bool: True if the pipeline exists, False otherwise.
        """
        return st.session_state.get("pipeline") is not None


def run_async(coroutine: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine on the session's event loop.

    One loop per session keeps the provider clients bound to a single loop.

    Returns:
        The coroutine's result.
    """
    if st.session_state.event_loop is None:
        st.session_state.event_loop = asyncio.new_event_loop()
    return st.session_state.event_loop.run_until_complete(coroutine)


def iter_fragments(stream: TextStream) -> Iterator[str]:
    """Drain an async text stream from synchronous Streamlit code.

    Yields:
        Text fragments in arrival order.
    """
    iterator = stream.__aiter__()
    while True:
        try:
            yield run_async(iterator.__anext__())
        except StopAsyncIteration:
            return


def validate_configuration() -> bool:
    """Validate application configuration and show user feedback.

    Returns:
        bool: True if configuration is valid, False otherwise.
    """
    try:
        config.validate()
    except ValueError as e:
        st.error(f"Configuration Error: {e}")
        return False
    else:
        return True


def initialize_system() -> bool:
    """Initialize the chatbot pipeline.

    Returns:
        bool: True if initialization succeeds, False otherwise.
    """
    try:
        with st.spinner("Initializing system..."):
            st.session_state.pipeline = ChatbotPipeline()
        logger.info("Chatbot pipeline initialized successfully")
    except (ValueError, RuntimeError, OSError) as e:
        logger.exception("Failed to initialize system")
        st.error(f"Failed to initialize system: {e}")
        return False
    else:
        return True


def seed_corpus() -> None:
    """Embed the FAQ file and replace the stored corpus."""
    try:
        faqs = load_faqs(config.FAQ_DATA_PATH)
        with st.spinner(f"Embedding {len(faqs)} FAQ entries..."):
            count = run_async(st.session_state.pipeline.seed_faqs(faqs))
    except (OSError, ValueError, RuntimeError) as e:
        logger.exception("Seeding failed")
        st.error(f"Seeding failed: {e}")
    else:
        st.success(f"Seeded {count} FAQ entries.")


def render_sidebar() -> None:
    """Render the sidebar with system status and maintenance actions."""
    with st.sidebar:
        st.header("System")
        config_status = "Valid" if validate_configuration() else "Invalid"
        st.write(f"**Configuration:** {config_status}")

        pipeline = st.session_state.pipeline
        if pipeline is not None:
            st.write(f"**FAQ records:** {pipeline.vector_store.count()}")
            if st.button("Seed FAQ corpus", use_container_width=True):
                seed_corpus()

        st.divider()
        if st.button("Clear conversation", use_container_width=True):
            SessionState.reset_conversation()
            st.rerun()


def render_history() -> None:
    """Render the conversation so far."""
    for message in st.session_state.messages:
        with st.chat_message(message["role"]):
            st.markdown(message["content"])


def answer_question(question: str) -> None:
    """Stream an answer for the visitor's question.

    Partial output is discarded when the provider chain fails, so the visitor
    sees either the full answer or one generic failure message.
    """
    pipeline: ChatbotPipeline = st.session_state.pipeline
    history = list(st.session_state.messages)
    st.session_state.messages.append({"role": "user", "content": question})
    with st.chat_message("user"):
        st.markdown(question)

    with st.chat_message("assistant"):
        placeholder = st.empty()
        response = ""
        try:
            result = run_async(pipeline.answer(history, question, stream=True))
            for fragment in iter_fragments(result.stream):
                response += fragment
                placeholder.markdown(response + "▌")
        except LLMChainError:
            logger.exception("Chat providers exhausted")
            placeholder.error(GENERIC_FAILURE_MESSAGE)
            return
        except Exception:
            logger.exception("Streaming error")
            placeholder.error(GENERIC_FAILURE_MESSAGE)
            return

        placeholder.markdown(response)

    st.session_state.messages.append({"role": "assistant", "content": response})


def main() -> None:
    """Main entry point for the Streamlit chat page."""
    st.set_page_config(page_title=config.CHATBOT_TITLE, layout="centered")

    SessionState.initialize()
    st.title(config.CHATBOT_TITLE)

    if not SessionState.is_system_ready() and not (
        validate_configuration() and initialize_system()
    ):
        return

    render_sidebar()
    render_history()

    question = st.chat_input(f"Ask me anything about {config.PORTFOLIO_OWNER}...")
    if question and question.strip():
        answer_question(question.strip())


if __name__ == "__main__":
    main()
