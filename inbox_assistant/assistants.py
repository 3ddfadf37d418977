"""
Assistant definitions and setup.

setup_assistants() creates each assistant on the service, or updates it when
its id is already configured, with its system prompt and the JSON schemas of
the tools it may call.
"""

import logging
from typing import Dict, List

from pydantic import BaseModel, Field

from .config import Config
from .dispatcher import ToolDispatcher
from .storage import PromptStore

logger = logging.getLogger(__name__)


class AssistantDefinition(BaseModel):
    name: str
    model: str
    prompt_name: str
    config_field: str
    env_var: str
    tools: List[str] = Field(default_factory=list)


ASSISTANTS: List[AssistantDefinition] = [
    AssistantDefinition(
        name="Handle-Inbox",
        model="gpt-4o-mini",
        prompt_name="hi",
        config_field="hi_assistant_id",
        env_var="HI_OPENAI_ASSISTANT_ID",
        tools=[
            "gmail_inbox_retrieval",
            "gmail_label_email",
            "gmail_archive_email",
            "gmail_send_to_bookkeeper",
            "gmail_create_draft",
            "gmail_get_message",
            "gmail_get_attachment",
            "gmail_search_unsubscribe_link",
            "slack_send_message",
            "trello_create_card",
            "archive_old_emails",
        ],
    ),
    AssistantDefinition(
        name="Daily-Report",
        model="gpt-4o",
        prompt_name="dare",
        config_field="dare_assistant_id",
        env_var="DARE_OPENAI_ASSISTANT_ID",
        tools=[
            "gmail_inbox_retrieval",
            "gmail_get_message",
            "gmail_search_unsubscribe_link",
            "slack_send_message",
        ],
    ),
    AssistantDefinition(
        name="Chat",
        model="gpt-4o",
        prompt_name="chat",
        config_field="chat_assistant_id",
        env_var="CHAT_OPENAI_ASSISTANT_ID",
        tools=[
            "gmail_inbox_retrieval",
            "gmail_label_email",
            "gmail_archive_email",
            "gmail_send_to_bookkeeper",
            "gmail_create_draft",
            "gmail_get_message",
            "gmail_get_attachment",
            "gmail_search_unsubscribe_link",
            "slack_send_message",
            "slack_get_thread_history",
            "trello_create_card",
            "update_system_prompt",
        ],
    ),
]


def build_assistant_payload(
    definition: AssistantDefinition,
    prompts: PromptStore,
    dispatcher: ToolDispatcher,
) -> Dict:
    instructions = prompts.load(definition.prompt_name)
    if not instructions:
        raise ValueError(
            f"System prompt for {definition.name} is missing: {prompts.path_for(definition.prompt_name)}"
        )
    return {
        "name": definition.name,
        "instructions": instructions,
        "model": definition.model,
        "tools": dispatcher.definitions(definition.tools),
    }


def setup_assistants(
    config: Config,
    client,
    dispatcher: ToolDispatcher,
    prompts: PromptStore,
) -> List[Dict[str, str]]:
    """
    Create or update every assistant. Returns one {name, id, action} per assistant.

    New ids must be copied into the environment by hand (see env_var).
    """
    results = []
    for definition in ASSISTANTS:
        payload = build_assistant_payload(definition, prompts, dispatcher)
        existing_id = getattr(config, definition.config_field)

        if existing_id:
            logger.info("Updating assistant %s (%s)", definition.name, existing_id)
            data = client.update_assistant(existing_id, payload)
            action = "updated"
        else:
            logger.info("Creating assistant %s", definition.name)
            data = client.create_assistant(payload)
            action = "created"

        logger.info("Assistant %s %s with ID %s", definition.name, action, data.get("id"))
        results.append(
            {
                "name": definition.name,
                "id": data.get("id"),
                "action": action,
                "env_var": definition.env_var,
            }
        )

    return results
