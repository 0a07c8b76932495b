"""Dependencies de autenticación para FastAPI"""
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional, Dict
from shared.auth.jwt_handler import decode_token
from shared.database.models import UserRole
from shared.utils.exceptions import Unauthenticated, Forbidden


security = HTTPBearer(auto_error=False)


def _claims_to_user(payload: Dict) -> Dict:
    role = payload.get('role') or payload.get('app_metadata', {}).get('role', UserRole.USER.value)
    return {
        'user_id': payload.get('sub') or payload.get('user_id'),
        'email': payload.get('email'),
        'name': payload.get('name'),
        'role': role,
    }


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Dict:
    '''Obtener usuario actual desde token JWT'''
    if credentials is None:
        raise Unauthenticated('Se requiere autenticación')

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise Unauthenticated('Token inválido o expirado')

    user = _claims_to_user(payload)
    if not user['user_id']:
        raise Unauthenticated('Token inválido: falta user_id')
    return user


async def get_current_organizer(
    current_user: Dict = Depends(get_current_user)
) -> Dict:
    '''Verificar que el usuario sea organizador o admin'''
    role = current_user.get('role')
    if role not in [UserRole.ORGANIZER.value, UserRole.ADMIN.value]:
        raise Forbidden(f"Acceso denegado. Requiere rol de organizer o admin, tu rol es: {role}")
    return current_user
