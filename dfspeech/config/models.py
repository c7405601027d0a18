"""
Configuration snapshot models.

Snapshots are frozen Pydantic models: once published by the ConfigStore they
are shared between sessions and the admin surface without copying.
"""

from typing import Iterator, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_CALL_LOG_LOCATION = "/var/log/dialogflow/{application}/%Y/%m/%d/%H/"


class LogicalAgent(BaseModel):
    """Named bundle of backend credentials selectable from a grammar."""
    model_config = ConfigDict(frozen=True)

    name: str
    project_id: str
    service_key: str = ""
    endpoint: str = ""


class AgentCredentials(BaseModel):
    """Credentials a session uses after resolving a logical agent name."""
    model_config = ConfigDict(frozen=True)

    project_id: str
    service_key: str = ""
    endpoint: str = ""


class AgentDirectory(BaseModel):
    """Case-insensitive lookup of logical agents, in configuration order."""
    model_config = ConfigDict(frozen=True)

    agents: Tuple[LogicalAgent, ...] = ()

    def get(self, name: str) -> Optional[LogicalAgent]:
        wanted = (name or "").casefold()
        for agent in self.agents:
            if agent.name.casefold() == wanted:
                return agent
        return None

    def __iter__(self) -> Iterator[LogicalAgent]:
        return iter(self.agents)

    def __len__(self) -> int:
        return len(self.agents)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None


class EngineConfig(BaseModel):
    """One immutable, versioned view of the engine configuration."""
    model_config = ConfigDict(frozen=True)

    version: int = 0

    service_key: str = ""
    endpoint: str = ""

    vad_voice_threshold: int = 512
    vad_voice_minimum_duration: int = 40  # ms
    vad_silence_minimum_duration: int = 500  # ms

    call_log_location: str = DEFAULT_CALL_LOG_LOCATION
    enable_call_logs: bool = True
    enable_preendpointer_recordings: bool = False
    enable_postendpointer_recordings: bool = False

    agents: AgentDirectory = Field(default_factory=AgentDirectory)

    def resolve_agent(self, name: str) -> AgentCredentials:
        """
        Map a logical agent name to credentials.

        Unknown names are used verbatim as the project id. Agent sections
        without their own key or endpoint inherit the global ones.
        """
        agent = self.agents.get(name)
        if agent is None:
            return AgentCredentials(project_id=name, service_key=self.service_key, endpoint=self.endpoint)
        return AgentCredentials(
            project_id=agent.project_id or name,
            service_key=agent.service_key or self.service_key,
            endpoint=agent.endpoint or self.endpoint,
        )
