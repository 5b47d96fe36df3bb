from pydantic import BaseModel, Field

from core.models import CreateRequest


class VMCreateSchema(BaseModel):
    """
    Schema for creating a new VM.

    All five fields are required. Zero or empty values pass schema
    validation and are rejected by the controller as invalid arguments.
    """

    name: str = Field(..., description="Unique VM (and DNS host) name")
    memory: int = Field(..., description="RAM in bytes")
    cores: int = Field(..., description="Number of virtual CPUs")
    size: int = Field(..., description="Disk size in bytes")
    source_image: str = Field(..., description="Logical volume to clone the disk from")

    def to_request(self) -> CreateRequest:
        return CreateRequest(
            name=self.name,
            memory=self.memory,
            cores=self.cores,
            size=self.size,
            source_image=self.source_image,
        )


class VMSchema(BaseModel):
    name: str
    ip: str
    mac: str


class VMListSchema(BaseModel):
    vms: list[VMSchema]
