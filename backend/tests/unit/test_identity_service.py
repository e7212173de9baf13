import pytest

from app.domain.identity import policy
from app.domain.identity.schemas import LoginRequest, RegisterRequest
from app.domain.identity.service import IdentityConflict, IdentityService, LoginFailed, ProfileNotFound
from app.infra import jwt as jwt_helper
from app.settings import settings


@pytest.fixture
def identity_service(ledger_repo, ledger_service):
	return IdentityService(ledger_repo, ledger_service)


def _register(email="Ada@MetaBento.io", username="@Ada_L", **extra):
	return RegisterRequest(email=email, password="correct horse 1", username=username, **extra)


@pytest.mark.asyncio
async def test_register_normalises_and_issues_token(identity_service):
	wallet = "0x" + "AB" * 20
	response = await identity_service.register(_register(wallet_address=wallet), ip_address="10.0.0.1")

	assert response.user.email == "ada@metabento.io"
	assert response.user.username == "ada_l"
	assert response.user.display_name == "ada_l"
	assert response.user.wallet_address == wallet.lower()
	assert response.user.a_points == 0
	claims = jwt_helper.decode_access(response.access_token)
	assert claims["sub"] == response.user.id
	assert "admin" not in (claims.get("roles") or [])


@pytest.mark.asyncio
async def test_register_duplicate_email_is_case_insensitive(identity_service):
	await identity_service.register(_register())
	with pytest.raises(IdentityConflict) as excinfo:
		await identity_service.register(_register(email="ADA@metabento.io", username="someone_else"))
	assert excinfo.value.reason == "email_taken"
	assert excinfo.value.status_code == 409


@pytest.mark.asyncio
async def test_register_duplicate_username(identity_service):
	await identity_service.register(_register())
	with pytest.raises(IdentityConflict) as excinfo:
		await identity_service.register(_register(email="other@metabento.io", username="ADA_L"))
	assert excinfo.value.reason == "username_taken"


@pytest.mark.asyncio
@pytest.mark.parametrize(
	"kwargs, error",
	[
		({"username": "ab"}, policy.UsernameFormatError),
		({"username": "admin"}, policy.UsernameFormatError),
		({"wallet_address": "0x1234"}, policy.WalletFormatError),
	],
)
async def test_register_policy_rejections(identity_service, kwargs, error):
	with pytest.raises(error):
		await identity_service.register(_register(**kwargs))


@pytest.mark.asyncio
async def test_register_rejects_simple_password(identity_service):
	payload = RegisterRequest(email="pat@metabento.io", password="onlyletters", username="pat")
	with pytest.raises(policy.PasswordTooWeak):
		await identity_service.register(payload)


@pytest.mark.asyncio
async def test_login_round_trip(identity_service):
	registered = await identity_service.register(_register())

	response = await identity_service.login(LoginRequest(email="ada@metabento.io", password="correct horse 1"))
	assert response.user.id == registered.user.id

	with pytest.raises(LoginFailed):
		await identity_service.login(LoginRequest(email="ada@metabento.io", password="wrong horse 1"))
	with pytest.raises(LoginFailed) as excinfo:
		await identity_service.login(LoginRequest(email="nobody@metabento.io", password="correct horse 1"))
	assert excinfo.value.reason == "invalid_credentials"


@pytest.mark.asyncio
async def test_admin_ids_receive_admin_role(identity_service, monkeypatch):
	registered = await identity_service.register(_register())
	monkeypatch.setattr(settings, "ledger_admin_ids", (registered.user.id,))

	response = await identity_service.login(LoginRequest(email="ada@metabento.io", password="correct horse 1"))

	assert jwt_helper.decode_access(response.access_token)["roles"] == ["admin"]


@pytest.mark.asyncio
async def test_profile_view_counts_only_other_viewers(identity_service, ledger_service):
	owner = await identity_service.register(_register())
	viewer = await identity_service.register(_register(email="bob@metabento.io", username="bob"))

	await identity_service.get_profile("ada_l", viewer.user.id)
	await identity_service.get_profile("@ADA_L", None)
	await identity_service.get_profile("ada_l", owner.user.id)

	level = await ledger_service.get_level(owner.user.id)
	assert level.profile_views == 2
	assert level.total_xp == 0


@pytest.mark.asyncio
async def test_private_profile_hidden_from_others(identity_service):
	owner = await identity_service.register(_register())
	await identity_service.set_visibility(owner.user.id, False)

	with pytest.raises(ProfileNotFound):
		await identity_service.get_profile("ada_l", None)
	profile = await identity_service.get_profile("ada_l", owner.user.id)
	assert profile.is_public is False


@pytest.mark.asyncio
async def test_get_me_unknown_user(identity_service):
	with pytest.raises(ProfileNotFound):
		await identity_service.get_me("missing")
