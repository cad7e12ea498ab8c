from django.urls import path

from . import api

urlpatterns = [
    path("health", api.health, name="health"),

    # Projetistas
    path("projetistas", api.projetistas, name="projetistas"),
    path("projetistas/<str:nome>", api.projetista_remover, name="projetista_remover"),
    path("projetistas/<str:nome>/password", api.projetista_senha, name="projetista_senha"),
    path("projetistas/<str:nome>/name", api.projetista_nome, name="projetista_nome"),

    # Autenticação e sessões
    path("auth/login", api.auth_login, name="auth_login"),
    path("auth/logout", api.auth_logout, name="auth_logout"),
    path("users/online", api.users_online, name="users_online"),
    path("users/heartbeat", api.users_heartbeat, name="users_heartbeat"),

    # Tabulações
    path("tabulacoes", api.tabulacoes, name="tabulacoes"),
    path("tabulacoes/<str:nome>", api.tabulacao_remover, name="tabulacao_remover"),

    # VI ALA
    path("vi-ala/next", api.vi_ala_next, name="vi_ala_next"),
    path("vi-ala/save", api.vi_ala_save, name="vi_ala_save"),
    path("vi-ala/registrar", api.vi_ala_registrar, name="vi_ala_registrar"),
    path("vi-ala/list", api.vi_ala_list, name="vi_ala_list"),
    path("vi-ala/ensure-base", api.vi_ala_ensure_base, name="vi_ala_ensure_base"),
    path("vi-ala.xlsx", api.vi_ala_download, name="vi_ala_download"),

    # Base de CTOs
    path("base.xlsx", api.base_download, name="base_download"),
    path("base-last-modified", api.base_last_modified, name="base_last_modified"),
    path("upload-base", api.upload_base, name="upload_base"),
]
