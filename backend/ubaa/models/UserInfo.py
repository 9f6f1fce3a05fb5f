from sqlmodel import SQLModel

# Profile as served by the user center; every field is optional upstream
class UserInfo(SQLModel):
    idCardType: str | None = None
    idCardTypeName: str | None = None
    phone: str | None = None
    schoolid: str | None = None
    name: str | None = None
    idCardNumber: str | None = None
    email: str | None = None
    username: str | None = None

class UserInfoResponse(SQLModel):
    code: int | str
    data: UserInfo | None = None
