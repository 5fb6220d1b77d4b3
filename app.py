import os, base64, logging, secrets
from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo
from flask import Flask, render_template, redirect, request, url_for, flash, jsonify, Response
from werkzeug.datastructures import FileStorage
from models import db, Post
from store import PostStore, StoreError, ValidationError, NotFoundError, StorageCorruptionError, ConflictError, DEFAULT_KEY
from typing import Union, Optional, Any
from dotenv import load_dotenv

load_dotenv()


def resolve_time_zone(name: str) -> tzinfo:
    if name.upper() == 'UTC':
        return timezone.utc
    return ZoneInfo(name)


app : Flask = Flask(__name__)
app.secret_key = os.getenv('SECRET_KEY') or secrets.token_hex(16)
app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv('DATABASE_URL', 'sqlite:///blog.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['BLOG_STORAGE_KEY'] = os.getenv('BLOG_STORAGE_KEY', DEFAULT_KEY)
app.config['BLOG_TITLE'] = os.getenv('BLOG_TITLE', 'Blog de Engenharia')
app.config['BLOG_AUTHOR'] = os.getenv('BLOG_AUTHOR', 'João Silva')
app.config['BLOG_TIME_ZONE'] = os.getenv('BLOG_TIME_ZONE', 'UTC')
app.config['BLOG_TZINFO'] = resolve_time_zone(app.config['BLOG_TIME_ZONE'])
if os.getenv('MAX_CONTENT_LENGTH'):
    app.config['MAX_CONTENT_LENGTH'] = int(os.environ['MAX_CONTENT_LENGTH'])
# Kept images round-trip as a plain form field; no cap unless configured
app.config['MAX_FORM_MEMORY_SIZE'] = int(os.environ['MAX_FORM_MEMORY_SIZE']) if os.getenv('MAX_FORM_MEMORY_SIZE') else None
db.init_app(app)

with app.app_context():
    db.create_all()

# View-time constants, never stored with the posts
CATEGORY_LABEL : str = '📝 Artigo'
READING_TIME_LABEL : str = '⏱️ 5 min de leitura'
TAG_LABELS : tuple[str, ...] = ('engenharia', 'tecnologia', 'desenvolvimento')

MONTHS_PT : tuple[str, ...] = (
    'janeiro', 'fevereiro', 'março', 'abril', 'maio', 'junho',
    'julho', 'agosto', 'setembro', 'outubro', 'novembro', 'dezembro',
)

MSG_CREATED : str = 'Post criado com sucesso!'
MSG_MISSING_FIELDS : str = 'Por favor, preencha título e conteúdo'
MSG_INVALID_IMAGE : str = 'A imagem precisa ser um arquivo enviado deste computador.'
MSG_DELETED : str = 'Post excluído.'
MSG_ALREADY_GONE : str = 'Este post já não existe.'
MSG_DELETE_CANCELLED : str = 'Exclusão cancelada.'
MSG_NO_POSTS : str = 'Nenhum post publicado ainda'
MSG_POST_NOT_FOUND : str = 'Post não encontrado'
MSG_CORRUPT : str = 'Os posts armazenados estão ilegíveis; nada foi alterado.'
MSG_CONFLICT : str = 'Os posts foram alterados por outra sessão ao mesmo tempo; tente novamente.'


def get_store() -> PostStore:
    return PostStore(app.config['BLOG_STORAGE_KEY'])


def local_time(post: Post) -> datetime:
    return post.created.astimezone(app.config['BLOG_TZINFO'])


@app.template_filter('long_date')
def long_date(post: Post) -> str:
    moment : datetime = local_time(post)
    return f'{moment.day} de {MONTHS_PT[moment.month - 1]} de {moment.year}'


@app.template_filter('short_date')
def short_date(post: Post) -> str:
    return local_time(post).strftime('%d/%m/%Y')


@app.context_processor
def blog_context() -> dict[str, Any]:
    return {
        'blog_title': app.config['BLOG_TITLE'],
        'author': app.config['BLOG_AUTHOR'],
        'category_label': CATEGORY_LABEL,
        'reading_time_label': READING_TIME_LABEL,
        'tag_labels': TAG_LABELS,
    }


def encode_image(upload: Optional[FileStorage]) -> Optional[str]:
    '''Read an uploaded image fully into memory and return it as a data URI.'''
    if upload is None or not upload.filename:
        return None
    data : bytes = upload.read()
    if not data:
        return None
    mimetype : str = upload.mimetype or 'application/octet-stream'
    return f'data:{mimetype};base64,{base64.b64encode(data).decode("ascii")}'


def is_embedded_image(value: str) -> bool:
    return value.startswith('data:')


def store_error_status(error: StoreError) -> int:
    return 409 if isinstance(error, ConflictError) else 500


def store_error_message(error: StoreError) -> str:
    if isinstance(error, StorageCorruptionError):
        return MSG_CORRUPT
    if isinstance(error, ConflictError):
        return MSG_CONFLICT
    return str(error)


@app.route('/')
def index() -> Union[str, Any]:
    posts : list[Post] = get_store().load()
    return render_template('index.html', posts=posts)


@app.route('/post/<post_id>')
def post(post_id:str) -> Union[str, Any]:
    store : PostStore = get_store()
    try:
        post_data : Post = store.find_by_id(post_id, store.load())
    except NotFoundError as error:
        if error.store_empty:
            app.logger.info('Post %s requested but no posts are stored', post_id)
            flash(MSG_NO_POSTS, 'info')
        else:
            app.logger.info('Post %s requested but does not exist', post_id)
            flash(MSG_POST_NOT_FOUND, 'warning')
        return redirect(url_for('index'))
    return render_template('post.html', post_data=post_data)


@app.route('/admin', methods=['GET', 'POST'])
def admin() -> Union[str, Any]:
    store : PostStore = get_store()

    if request.method == 'POST':
        title : str = request.form.get('title', '')
        content : str = request.form.get('content', '')
        # A fresh upload replaces the image kept from a rejected submit
        image_url : str = encode_image(request.files.get('image')) or ''
        if not image_url and not request.form.get('remove_image'):
            image_url = request.form.get('image_url', '').strip()
        form : dict[str, str] = {'title': title, 'content': content, 'image_url': image_url}
        if image_url and not is_embedded_image(image_url):
            app.logger.info('Rejected post submission: image is not a data URI')
            form['image_url'] = ''
            return render_template('admin.html', posts=store.load(), form=form, error=MSG_INVALID_IMAGE), 400
        try:
            new_post : Post = store.create(title, content, image_url)
        except ValidationError as error:
            app.logger.info('Rejected post submission: %s', error)
            return render_template('admin.html', posts=store.load(), form=form, error=MSG_MISSING_FIELDS), 400
        except StoreError as error:
            app.logger.error('Could not create post: %s', error)
            return render_template('admin.html', posts=store.load(), form=form, error=store_error_message(error)), store_error_status(error)
        app.logger.info('Post %s published from admin', new_post.id)
        flash(MSG_CREATED, 'success')
        return redirect(url_for('admin'))

    return render_template('admin.html', posts=store.load(), form={}, error=None)


@app.route('/admin/delete/<post_id>', methods=['GET', 'POST'])
def delete_post(post_id:str) -> Union[str, Any]:
    store : PostStore = get_store()

    if request.method == 'GET':
        try:
            post_data : Post = store.find_by_id(post_id, store.load(strict=True))
        except StorageCorruptionError as error:
            app.logger.error('Could not read posts to confirm deleting %s: %s', post_id, error)
            flash(MSG_CORRUPT, 'error')
            return redirect(url_for('admin'))
        except NotFoundError:
            flash(MSG_ALREADY_GONE, 'warning')
            return redirect(url_for('admin'))
        return render_template('confirm_delete.html', post_data=post_data)

    if request.form.get('confirm') != 'yes':
        flash(MSG_DELETE_CANCELLED, 'info')
        return redirect(url_for('admin'))
    try:
        removed : bool = store.delete(post_id)
    except StoreError as error:
        app.logger.error('Could not delete post %s: %s', post_id, error)
        flash(store_error_message(error), 'error')
        return redirect(url_for('admin'))
    flash(MSG_DELETED if removed else MSG_ALREADY_GONE, 'success' if removed else 'warning')
    return redirect(url_for('admin'))


def api_error(message: str, status: int, **extra: Any) -> tuple[Response, int]:
    return jsonify({'success': False, 'message': message, **extra}), status


def api_store_error(error: StoreError) -> tuple[Response, int]:
    return api_error(str(error), store_error_status(error))


def json_text(data: dict[str, Any], field: str) -> str:
    value : Any = data.get(field)
    return value if isinstance(value, str) else ''


@app.route('/api/posts', methods=['GET', 'POST'])
def api_posts() -> Union[str, Any]:
    store : PostStore = get_store()
    if request.method == 'GET':
        return jsonify([p.to_dict() for p in store.load()]), 200

    data : Any = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    image_url : str = json_text(data, 'imageUrl').strip()
    if image_url and not is_embedded_image(image_url):
        return api_error('imageUrl must be a data URI', 400, fields=['imageUrl'])
    try:
        new_post : Post = store.create(json_text(data, 'title'), json_text(data, 'content'), image_url)
    except ValidationError as error:
        return api_error('title and content are required', 400, fields=error.fields)
    except StoreError as error:
        app.logger.error('Could not create post: %s', error)
        return api_store_error(error)
    return jsonify({'success': True, 'post': new_post.to_dict()}), 201


@app.route('/api/posts/<post_id>', methods=['GET', 'DELETE'])
def api_single_post(post_id:str) -> Union[str, Any]:
    store : PostStore = get_store()
    if request.method == 'GET':
        try:
            return jsonify(store.find_by_id(post_id).to_dict()), 200
        except NotFoundError as error:
            return api_error('post not found', 404, storeEmpty=error.store_empty)

    if request.args.get('confirm', '').lower() not in ('true', '1', 'yes'):
        return api_error('deletion must be confirmed with ?confirm=true', 428)
    try:
        removed : bool = store.delete(post_id)
    except StoreError as error:
        app.logger.error('Could not delete post %s: %s', post_id, error)
        return api_store_error(error)
    return jsonify({'success': True, 'deleted': removed}), 200


@app.errorhandler(404)
def not_found(_error) -> Union[str, Any]:
    return render_template('404.html'), 404


if __name__ == '__main__':
    logging.basicConfig(level=os.getenv('LOG_LEVEL', 'INFO'))
    port : int = int(os.getenv('PORT', '5000'))
    print(f'{app.config["BLOG_TITLE"]} running on port {port}')
    app.run(host='0.0.0.0', port=port)
