import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from solusics.core.config import settings
from solusics.routers import auth, whatsapp

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f'{settings.API_V1_PREFIX}/openapi.json',
    docs_url='/docs',
    redoc_url='/redoc'
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=['*'],  # In production, specify actual origins
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

# Include routers
app.include_router(auth.router, prefix=settings.API_V1_PREFIX)
app.include_router(whatsapp.router, prefix=settings.API_V1_PREFIX)

@app.get('/')
async def root():
    return {'message': 'Solusics WhatsApp API Server', 'status': 'running'}

@app.get('/health')
async def health():
    return {'status': 'ok'}
