from pydantic import BaseModel, Field
from typing import List

class IntentModel(BaseModel):
    sender: str
    forwarded_call: str
    replay_value: int = Field(ge=0)
    signature: str = "0x"

class HandleIntentsRequest(BaseModel):
    intents: List[IntentModel] = Field(min_length=1)
    beneficiary: str

class CreateGatewayRequest(BaseModel):
    controller: str
    salt: int = Field(default=0, ge=0)
