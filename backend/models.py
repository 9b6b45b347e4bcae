from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict


# -----------------------------
# Models
# -----------------------------
# Field names follow the JSON the model is asked to produce, so a dumped
# blueprint can be fed back through the normalizer unchanged.
class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class Dataset(_Frozen):
    name: str
    url: str = ""
    source: str = "Other"  # "Hugging Face" / "Kaggle" / "Other", not enforced
    description: str = ""


class PaperReference(_Frozen):
    title: str
    url: Optional[str] = None
    authors: Optional[str] = None


class ModelReference(_Frozen):
    modelId: str
    task: str

    @property
    def hub_url(self) -> str:
        return f"https://huggingface.co/{self.modelId}"


class ProjectBlueprint(_Frozen):
    id: str
    title: str
    description: str
    difficulty: str  # Beginner / Intermediate / Advanced, passed through as given
    domain: str
    paper: PaperReference
    huggingFaceModel: ModelReference
    datasets: Tuple[Dataset, ...] = ()
    implementationSteps: Tuple[str, ...] = ()
    techStack: Tuple[str, ...] = ()
    pythonSnippet: str


class WebSource(_Frozen):
    uri: str
    title: str = ""


class GroundingChunk(_Frozen):
    web: Optional[WebSource] = None


class GenerationResult(_Frozen):
    projects: Tuple[ProjectBlueprint, ...]
    citations: Tuple[GroundingChunk, ...] = ()
