from oidc_login.main import run

run()
